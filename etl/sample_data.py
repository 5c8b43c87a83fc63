# etl/sample_data.py
import json
import os

from etl.config import BIBLE_DATA_PATH
from etl.utils import ensure_dir

SAMPLE_VERSES = [
    ("Genesis 1:1", "In the beginning God created the heaven and the earth.", "KJV", "Genesis", 1, 1),
    (
        "Genesis 1:27",
        "So God created mankind in his own image, in the image of God he created them; "
        "male and female he created them.",
        "NIV", "Genesis", 1, 27,
    ),
    ("Psalm 23:1", "The LORD is my shepherd, I lack nothing.", "NIV", "Psalms", 23, 1),
    ("Psalm 119:105", "Your word is a lamp for my feet, a light on my path.", "NIV", "Psalms", 119, 105),
    (
        "John 3:16",
        "For God so loved the world that he gave his one and only Son, that whoever believes "
        "in him shall not perish but have eternal life.",
        "NIV", "John", 3, 16,
    ),
    (
        "Romans 8:28",
        "And we know that in all things God works for the good of those who love him, who have "
        "been called according to his purpose.",
        "NIV", "Romans", 8, 28,
    ),
    ("Philippians 4:13", "I can do all this through him who gives me strength.", "NIV", "Philippians", 4, 13),
    ("1 John 4:8", "Whoever does not love does not know God, because God is love.", "NIV", "1 John", 4, 8),
    (
        "1 Corinthians 13:4",
        "Love is patient, love is kind. It does not envy, it does not boast, it is not proud.",
        "NIV", "1 Corinthians", 13, 4,
    ),
    (
        "Revelation 21:4",
        "He will wipe every tear from their eyes. There will be no more death or mourning or "
        "crying or pain, for the old order of things has passed away.",
        "NIV", "Revelation", 21, 4,
    ),
]


def build_sample_verses():
    return [
        {
            "reference": reference,
            "text": text,
            "translation": translation,
            "book": book,
            "chapter": chapter,
            "verse": verse,
        }
        for reference, text, translation, book, chapter, verse in SAMPLE_VERSES
    ]


def write_sample_data(path: str = BIBLE_DATA_PATH) -> int:
    verses = build_sample_verses()
    ensure_dir(os.path.dirname(path))
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"verses": verses}, f, ensure_ascii=False, indent=2)
    return len(verses)


def main():
    count = write_sample_data()
    print(f"OK wrote {count} sample verses to {BIBLE_DATA_PATH}")


if __name__ == "__main__":
    main()
