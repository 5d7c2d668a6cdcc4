"""Global constants for Score Simplifier."""

# Tick resolution (quarter note)
TICKS_PER_QUARTER = 1024

# Exported MusicXML divisions per quarter note
EXPORT_DIVISIONS = TICKS_PER_QUARTER

# Note value base ticks, largest first
DURATION_TICKS = {
    "whole": 4096,
    "half": 2048,
    "quarter": 1024,
    "eighth": 512,
    "16th": 256,
    "32nd": 128,
    "64th": 64,
}
DURATION_ORDER = ["whole", "half", "quarter", "eighth", "16th", "32nd"]

# MusicXML <type> spellings accepted on input
TYPE_ALIASES = {
    "breve": "whole",
    "whole": "whole",
    "half": "half",
    "quarter": "quarter",
    "eighth": "eighth",
    "16th": "16th",
    "sixteenth": "16th",
    "32nd": "32nd",
    "64th": "64th",
}

EIGHTH_TICKS = DURATION_TICKS["eighth"]
MIN_REST_TICKS = DURATION_TICKS["32nd"]

# Musical defaults (used when the source is silent)
DEFAULT_TEMPO = 120
DEFAULT_TIME_SIGNATURE = (4, 4)
DEFAULT_DIVISIONS = 1
DEFAULT_TITLE = "Untitled"
DEFAULT_COMPOSER = "Unknown"

# Strong beats per meter, in the meter's own beat unit (1-indexed)
STRONG_BEATS = {
    (2, 4): (1,),
    (2, 2): (1,),
    (3, 4): (1,),
    (3, 8): (1,),
    (4, 4): (1, 3),
    (4, 2): (1, 3),
    (5, 4): (1, 3),
    (6, 4): (1, 4),
    (6, 8): (1, 4),
    (7, 8): (1, 4),
    (9, 8): (1, 4, 7),
    (12, 8): (1, 4, 7, 10),
}

# Step -> semitone above C
STEP_SEMITONES = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}
PITCH_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

# Voice separation fallback cutoffs (MIDI)
SOPRANO_CUTOFF = 72  # C5 and above on the upper staff
BASS_CUTOFF = 48  # below C3 on the lower staff

# Analyzer heuristics
ANACRUSIS_THRESHOLD = 0.9
ANOMALY_STD_FACTOR = 2.0
KMEANS_CLUSTERS = 4
ORACLE_TIMEOUT = 3.0
