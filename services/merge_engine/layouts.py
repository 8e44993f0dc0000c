"""Row layouts of the observation templates.

Each indicator has a fixed row in the template sheet. The layout also says
which column holds each field and where the header slots are.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


# Field roles, in column order
LABEL = "label"
DESCRIPTION = "description"
RATING = "rating"
STRENGTHS = "strengths"
GROWTH = "growth"
FIELD_ROLES = (LABEL, DESCRIPTION, RATING, STRENGTHS, GROWTH)


@dataclass(frozen=True)
class LayoutEntry:
    """Where one indicator goes, plus the text the template expects there."""
    key: str
    row: int
    label: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class RowLayout:
    name: str
    entries: Tuple[LayoutEntry, ...]
    columns: Dict[str, str]  # role -> column letter; a missing role is not written
    header_cells: Dict[str, str] = field(default_factory=dict)  # header field -> cell ref
    default_template: str = ""

    def __post_init__(self):
        keys = [e.key for e in self.entries]
        rows = [e.row for e in self.entries]
        if len(set(keys)) != len(keys):
            raise ValueError(f"Layout '{self.name}' has duplicate indicator keys")
        if len(set(rows)) != len(rows):
            raise ValueError(f"Layout '{self.name}' maps two indicators to one row")
        unknown = set(self.columns) - set(FIELD_ROLES)
        if unknown:
            raise ValueError(f"Layout '{self.name}' has unknown roles: {sorted(unknown)}")

    def entry(self, key: str) -> Optional[LayoutEntry]:
        for e in self.entries:
            if e.key == key:
                return e
        return None

    @property
    def keys(self) -> Tuple[str, ...]:
        return tuple(e.key for e in self.entries)


TEACHER_LAYOUT = RowLayout(
    name="teacher",
    default_template="TeacherTemplate",
    columns={LABEL: "B", DESCRIPTION: "C", RATING: "D", STRENGTHS: "E", GROWTH: "F"},
    header_cells={"header_block": "A1"},
    entries=(
        LayoutEntry(
            "1.1", 4,
            "1.1. Organized Teaching Area",
            "- Teaching area is highly organized; materials, props, and technology are "
            "easily accessible. Students can see the teaching materials well.",
        ),
        LayoutEntry(
            "1.2", 5,
            "1.2. Safe teaching environment",
            "Teaching environment is completely safe for all activities. Classroom space is "
            "effectively organized for easy movement during AAs and transitions.",
        ),
        LayoutEntry(
            "1.3", 6,
            "1.3. Visually stimulating environment",
            "Classroom visuals fully reinforce lesson content and engage students.",
        ),
        LayoutEntry(
            "2.1.– 2.2", 7,
            "2.1.+ 2.2. Classroom Routines  & Management Strategies",
            "- Routines are well-planned, effectively taught/modeled, and consistently reinforced.\n"
            "- Effective strategies create a productive and positive environment.",
        ),
        LayoutEntry(
            "2.3", 8,
            "2.3. Problem-Solving Tech Issues",
            "Proactively resolves tech issues without interrupting lessons.",
        ),
        LayoutEntry(
            "3.1", 9,
            "3.1. Utilizing Lession Plans",
            "Follows lesson plans with precision and adapts effectively.",
        ),
        LayoutEntry(
            "3.5", 10,
            "3.5. Using Memory Mode",
            "Effectively delivers lessons using Memory Mode, allowing smooth and engaging instruction.",
        ),
        LayoutEntry(
            "3.4 – 5.1", 11,
            "3.4 + 5.1 Using Materials Effectively",
            "Fully utilizes GrapeSEED materials as outlined in the Lesson Plans and manuals.",
        ),
        LayoutEntry(
            "3.3 – 6.1 – 7.2", 12,
            "3.3 + 6.1 + 7.2 Actively Monitoring Student Progress",
            "- Prepares for diverse student responses and uses them to enrich lessons. Use the "
            "Lesson Plan, Learning Objectives, and components to create follow-up prompts and "
            "questions.\n"
            "- Consistently monitors and adjusts teaching based on students’ responses and "
            "behavior to enhance learning.\n"
            "- Listens for correct pronunciation, enunciation, and use of words related to the "
            "Learning Objectives.\n"
            "- Provides timely, specific, and constructive feedback to help students improve "
            "accuracy and pronunciation.",
        ),
        LayoutEntry(
            "7.1", 13,
            "7.1. Asking targeted Questions",
            "Consistently asks purposeful questions that align with lesson objectives and "
            "engage all students.",
        ),
        LayoutEntry(
            "7.3", 14,
            "7.3. Using Effective Transitions",
            "Uses transitions in the Lesson Plans or smoothly connects lesson components with "
            "purposeful transitions that reinforce objectives.",
        ),
        LayoutEntry(
            "7.4 – 8.1", 15,
            "7.4 + 8.1. Positive Presence and Participation",
            "- Utilizes gestures, expressions, and prompts to actively engage all students in lessons.\n"
            "- Builds on student responses.\n"
            "- Uses props students are interested in that relate to the target words and expressions.\n"
            "- Maintains a positive demeanor with engaging facial expressions, body language, and "
            "voice that foster a joyful classroom.",
        ),
        LayoutEntry(
            "7.5", 16,
            "7.5. Allowing Time for Student Responses",
            "Consistently provides appropriate wait time for students to think and respond using English.",
        ),
        LayoutEntry(
            "7.6", 17,
            "7.6. Facilitatiing Peer Practice",
            "Regularly creates opportunities for students to practice speaking in pairs or small "
            "groups, fostering confidence and language use.",
        ),
        LayoutEntry(
            "8.2", 18,
            "8.2. Using Gestures and Props",
            "- Purposefully integrates gestures and props to enhance comprehension and retention.\n"
            "- Points at the pictures while saying the target word, purposefully connecting the "
            "word with the image.",
        ),
        LayoutEntry(
            "8.3", 19,
            "8.3. Emphasizing Learning Objectives",
            "Consistently uses visual cues to reinforce lesson objectives (e.g., phonograms) and "
            "key vocabulary.",
        ),
        LayoutEntry(
            "8.4", 20,
            "8.4. Modeling Proper Speech",
            "- Clearly models speech with correct grammar, intonation, and pronunciation, serving "
            "as an effective language role model.",
        ),
        LayoutEntry(
            "8.5", 21,
            "8.5. Modeling Actions",
            "- Accurately models actions and movements that align with lesson content, enhancing "
            "comprehension and engagement.",
        ),
    ),
)


# The admin template keeps its own (Vietnamese) label and description text, so
# entries carry no defaults; the notes column takes strengths.
ADMIN_LAYOUT = RowLayout(
    name="admin",
    default_template="AdminTemplate",
    columns={LABEL: "B", DESCRIPTION: "C", RATING: "D", STRENGTHS: "E"},
    header_cells={
        "header_left": "A1",
        "header_right": "D1",
        "teacher_label": "D4",
        "trainer_summary": "F6",
    },
    entries=tuple(
        LayoutEntry(e.key, e.row + 2) for e in TEACHER_LAYOUT.entries
    ),
)


LAYOUTS: Dict[str, RowLayout] = {
    "teacher": TEACHER_LAYOUT,
    "admin": ADMIN_LAYOUT,
}


def layout_for(kind: str) -> RowLayout:
    try:
        return LAYOUTS[kind]
    except KeyError:
        raise ValueError(f"Unknown merge kind: {kind}") from None
