"""Keyword dictionaries behind the rule-based extractors."""

from __future__ import annotations

THEME_KEYWORDS: dict[str, tuple[str, ...]] = {
    "love": ("love", "romance", "heart", "affection", "dating"),
    "friendship": ("friend", "friendship", "buddy", "companion"),
    "betrayal": ("betray", "deceive", "backstab", "treacher"),
    "revenge": ("revenge", "vengeance", "payback", "retribution"),
    "sacrifice": ("sacrifice", "give up", "selfless"),
    "redemption": ("redemption", "forgive", "second chance", "atone"),
    "power": ("power", "control", "authority", "dominance", "throne"),
    "justice": ("justice", "unfair", "moral", "injustice"),
    "family": ("family", "mother", "father", "sibling", "parent", "brother", "sister"),
    "death": ("death", "die", "dying", "kill", "murder", "grave"),
    "hope": ("hope", "optimism", "dream"),
    "fear": ("fear", "afraid", "terror", "dread"),
    "growth": ("learn", "grow", "mature", "coming of age"),
    "good-vs-evil": ("evil", "villain", "darkness", "light against"),
    "identity": ("identity", "who i am", "true self", "belong"),
}

EMOTION_KEYWORDS: dict[str, tuple[str, ...]] = {
    "joy": ("joy", "happy", "glad", "cheerful", "delighted"),
    "sadness": ("sad", "sorrow", "grief", "melancholy", "despair"),
    "anger": ("angry", "furious", "rage", "irritated", "wrath"),
    "fear": ("fear", "afraid", "terrified", "scared", "anxious"),
    "surprise": ("surprised", "shocked", "amazed", "astonished"),
    "disgust": ("disgust", "revolted", "repulsed", "sickened"),
    "anticipation": ("anticipat", "await", "expect", "eager"),
    "love": ("love", "affection", "adoration", "fondness"),
    "hope": ("hope", "optimistic", "confident"),
    "excitement": ("excited", "thrilled", "enthusiastic"),
    "confusion": ("confused", "puzzled", "bewildered", "perplexed"),
    "pride": ("proud", "accomplished", "triumphant"),
}

PLOT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "meeting": ("meet", "encounter", "introduction", "first time"),
    "conflict": ("fight", "argue", "disagree", "conflict", "against"),
    "resolution": ("resolve", "solution", "solve", "at last"),
    "revelation": ("reveal", "discover", "realize", "realise", "truth"),
    "climax": ("climax", "final battle", "showdown"),
    "journey": ("travel", "journey", "adventure", "quest", "expedition"),
    "transformation": ("transform", "became", "evolve", "changed forever"),
    "chase": ("chase", "pursue", "hunt", "track down"),
    "escape": ("escape", "flee", "fled", "run away", "get away"),
    "betrayal": ("betray", "deceive", "trick", "double-cross"),
    "sacrifice": ("sacrifice", "surrender", "gave up"),
    "turning_point": ("suddenly", "everything changed", "turning point"),
    "setup": ("once upon", "long ago", "in the beginning"),
}

GENRE_INDICATORS: dict[str, tuple[str, ...]] = {
    "fantasy": ("magic", "wizard", "dragon", "spell", "enchant", "giant", "sorcer"),
    "mythology": ("god", "goddess", "myth", "legend", "asgard", "olymp"),
    "scifi": ("spaceship", "robot", "alien", "starship", "android", "laser"),
    "mystery": ("mystery", "detective", "clue", "investigat", "suspect"),
    "romance": ("romance", "kiss", "relationship", "lover"),
    "horror": ("horror", "scary", "nightmare", "monster", "haunt"),
    "thriller": ("thriller", "suspense", "danger", "hostage"),
    "drama": ("dramatic", "intense", "tragic"),
    "comedy": ("funny", "humor", "laugh", "joke", "silly"),
}

ACTION_WORDS: tuple[str, ...] = (
    "fight", "battle", "attack", "chase", "run", "strike", "wield", "charge",
    "swing", "punch", "sword", "explode", "clash", "escape",
)

DESCRIPTIVE_WORDS: tuple[str, ...] = (
    "ancient", "beautiful", "dark", "vast", "towering", "gleaming", "crimson",
    "silent", "cold", "misty", "golden", "shadowy", "bright", "narrow",
)

TIME_MARKERS: tuple[str, ...] = (
    "morning", "evening", "night", "dawn", "dusk", "midnight", "noon",
    "yesterday", "tomorrow", "winter", "summer", "autumn", "spring",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)

TONE_INDICATORS: dict[str, tuple[str, ...]] = {
    "dark": ("death", "kill", "murder", "blood", "evil", "nightmare"),
    "light": ("joy", "happy", "laugh", "smile", "bright", "wonderful"),
    "mysterious": ("secret", "hidden", "mystery", "unknown", "strange"),
    "romantic": ("love", "kiss", "heart", "romantic", "passion"),
    "action": ("fight", "chase", "battle", "attack", "escape"),
    "melancholic": ("sad", "cry", "tears", "lonely", "sorrow", "grief"),
    "humorous": ("funny", "joke", "silly", "ridiculous"),
    "tense": ("nervous", "worry", "anxious", "tension", "stress"),
}

CHARACTER_CONTEXT_WORDS: frozenset[str] = frozenset(
    {
        "said", "says", "asked", "replied", "answered", "whispered", "shouted",
        "thought", "felt", "walked", "ran", "looked", "smiled", "laughed",
        "cried", "wielded", "turned", "nodded", "he", "she", "his", "her",
        "him", "himself", "herself",
    }
)

# Capitalised words that are almost never character names
COMMON_WORDS: frozenset[str] = frozenset(
    {
        "The", "And", "But", "For", "You", "All", "That", "Have", "Her", "Was",
        "One", "Our", "Had", "Not", "What", "Were", "They", "When", "Your",
        "Can", "Said", "Then", "There", "This", "These", "Those", "With",
        "From", "Into", "After", "Before", "While", "Where", "Why", "How",
        "His", "She", "Him", "Its", "Their", "Them", "Now", "Yet", "Still",
        "Just", "Even", "Once", "Chapter", "Part", "Note", "Todo", "Remember",
        "Yes", "Some", "Every", "Each", "Suddenly", "Finally", "Later",
        "Meanwhile", "Perhaps", "Maybe", "Nothing", "Something", "Everyone",
        "Someone", "Nobody", "Who", "Which", "If", "Although", "Because",
        "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
        "January", "February", "March", "April", "June", "July", "August",
        "September", "October", "November", "December",
    }
)

LOCATION_WORDS: frozenset[str] = frozenset(
    {
        "Street", "Road", "Avenue", "City", "Town", "Village", "Country", "State",
        "Park", "School", "Hospital", "Castle", "Forest", "River", "Mountain",
        "Kingdom", "Empire", "Lake", "Sea", "Ocean", "Valley", "Tower",
    }
)

LOCATION_PREPOSITIONS: tuple[str, ...] = ("at", "in", "on", "near", "by", "outside", "inside")

QUERY_INTENT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "character": ("character", "who is", "who was", "protagonist", "villain", "hero"),
    "plot": ("plot", "story", "chapter", "happen", "event", "scene"),
    "theme": ("theme", "meaning", "symbol", "motif", "represent"),
    "setting": ("setting", "location", "place", "where", "world"),
    "dialogue": ("dialogue", "conversation", "said", "quote", "talk"),
}

QUERY_STOPWORDS: frozenset[str] = frozenset(
    {
        "the", "and", "for", "with", "that", "this", "what", "when", "where",
        "which", "who", "whom", "about", "from", "into", "does", "have", "there",
        "their", "they", "them", "show", "find", "tell", "give", "some", "any",
    }
)
