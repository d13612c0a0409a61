"""Deterministic fallback used whenever the LLM path cannot produce output.

Two fixed tables back it: popular titles per genre (matched against the
reader's top genres) and a short list of "discovery" titles from genres the
reader does not already favour. Nothing here touches the network, and an
unknown genre simply contributes no titles.
"""

from __future__ import annotations

import math
from typing import Dict, List, Sequence

from common.structured_logging import get_logger

from .config import PipelineConfig
from .models import DetectedBook, ReadingProfile, Recommendation

logger = get_logger(__name__)

# (title, author, reason)
POPULAR_BY_GENRE: Dict[str, List[tuple[str, str, str]]] = {
    "Fiction": [
        ("The Seven Husbands of Evelyn Hugo", "Taylor Jenkins Reid", "Popular contemporary fiction with strong character development"),
        ("Where the Crawdads Sing", "Delia Owens", "Bestselling literary fiction with mystery elements"),
        ("Lessons in Chemistry", "Bonnie Garmus", "Sharp, funny novel about a chemist turned TV cook"),
        ("A Man Called Ove", "Fredrik Backman", "Warm, character-driven story loved by book clubs"),
    ],
    "Mystery": [
        ("The Thursday Murder Club", "Richard Osman", "Cozy mystery with clever plotting and humor"),
        ("The Silent Patient", "Alex Michaelides", "Psychological thriller with unexpected twists"),
        ("The Hound of the Baskervilles", "Arthur Conan Doyle", "The defining Sherlock Holmes case"),
        ("In the Woods", "Tana French", "Atmospheric procedural with a haunting central puzzle"),
    ],
    "Fantasy": [
        ("The Name of the Wind", "Patrick Rothfuss", "Epic fantasy with beautiful prose and world-building"),
        ("The Priory of the Orange Tree", "Samantha Shannon", "Standalone epic fantasy with dragons and strong characters"),
        ("Mistborn: The Final Empire", "Brandon Sanderson", "Heist-driven fantasy with an inventive magic system"),
        ("Piranesi", "Susanna Clarke", "Dreamlike, puzzle-box fantasy in a house of endless halls"),
    ],
    "Science Fiction": [
        ("Project Hail Mary", "Andy Weir", "Problem-solving survival story with real science"),
        ("The Left Hand of Darkness", "Ursula K. Le Guin", "Landmark novel about culture and gender"),
        ("Hyperion", "Dan Simmons", "Canterbury Tales-style epic across a far future"),
        ("The Three-Body Problem", "Liu Cixin", "Big-idea first contact novel"),
    ],
    "Romance": [
        ("Beach Read", "Emily Henry", "Witty romance between two rival writers"),
        ("The Hating Game", "Sally Thorne", "Office enemies-to-lovers favourite"),
        ("Outlander", "Diana Gabaldon", "Sweeping time-travel romance"),
    ],
    "Thriller": [
        ("Gone Girl", "Gillian Flynn", "Twisting thriller about a marriage gone wrong"),
        ("The Girl with the Dragon Tattoo", "Stieg Larsson", "Dark investigative thriller"),
        ("The Woman in the Window", "A.J. Finn", "Hitchcockian suspense with an unreliable narrator"),
    ],
    "Historical Fiction": [
        ("All the Light We Cannot See", "Anthony Doerr", "Luminous WWII novel told in two threads"),
        ("The Nightingale", "Kristin Hannah", "Sisters in occupied France"),
        ("Wolf Hall", "Hilary Mantel", "Tudor politics through Thomas Cromwell's eyes"),
    ],
    "Horror": [
        ("Mexican Gothic", "Silvia Moreno-Garcia", "Lush gothic horror in 1950s Mexico"),
        ("The Haunting of Hill House", "Shirley Jackson", "Classic of psychological horror"),
        ("The Shining", "Stephen King", "Isolation and dread in the Overlook Hotel"),
    ],
    "Non-Fiction": [
        ("Sapiens", "Yuval Noah Harari", "Sweeping history of humankind"),
        ("Thinking, Fast and Slow", "Daniel Kahneman", "How we really make decisions"),
        ("The Immortal Life of Henrietta Lacks", "Rebecca Skloot", "Science, ethics and family history"),
    ],
    "Biography": [
        ("Steve Jobs", "Walter Isaacson", "Definitive portrait of a restless innovator"),
        ("Becoming", "Michelle Obama", "Candid memoir of a life in public"),
        ("Alexander Hamilton", "Ron Chernow", "The biography behind the musical"),
    ],
}

# (title, author, genre, reason)
DISCOVERY_BOOKS: List[tuple[str, str, str, str]] = [
    ("Educated", "Tara Westover", "Memoir", "Powerful memoir to expand beyond fiction"),
    ("The Midnight Library", "Matt Haig", "Philosophical Fiction", "Thought-provoking philosophical fiction"),
    ("Persepolis", "Marjane Satrapi", "Graphic Novel", "A graphic memoir that shows what the form can do"),
    ("The Overstory", "Richard Powers", "Literary Fiction", "Prize-winning novel woven around trees"),
    ("Braiding Sweetgrass", "Robin Wall Kimmerer", "Nature Writing", "Botany and indigenous wisdom in lyrical essays"),
    ("The Gene", "Siddhartha Mukherjee", "Popular Science", "Engaging history of heredity"),
]


def _norm(title: str) -> str:
    return " ".join(title.casefold().split())


class RuleBasedRecommender:
    """Table-driven candidates; never raises, never does I/O."""

    def __init__(self, config: PipelineConfig | None = None):
        self.config = config or PipelineConfig()

    def recommend(
        self,
        books: Sequence[DetectedBook],
        profile: ReadingProfile,
        max_recommendations: int | None = None,
    ) -> List[Recommendation]:
        n = max_recommendations or self.config.DEFAULT_RESPONSE_SIZE
        owned = {_norm(b.title) for b in books}

        # round() first so 0.6 * 5 style float noise cannot shift a quota
        genre_quota = math.ceil(round(n * self.config.FALLBACK_GENRE_SHARE, 9))
        discovery_quota = max(1, math.floor(round(n * self.config.FALLBACK_DISCOVERY_SHARE, 9)))

        genre_recs = self._genre_picks(profile, owned, genre_quota)
        discovery_recs = self._discovery_picks(
            profile, owned | {_norm(r.title) for r in genre_recs}, discovery_quota
        )

        logger.info(
            "Rule-based recommendations generated",
            extra={
                "genre_count": len(genre_recs),
                "discovery_count": len(discovery_recs),
                "top_genres": [g.genre for g in profile.top_genres],
            },
        )
        return (genre_recs + discovery_recs)[:n]

    def _genre_picks(
        self, profile: ReadingProfile, owned: set[str], total: int
    ) -> List[Recommendation]:
        if not profile.top_genres or total <= 0:
            return []
        per_genre = math.ceil(total / len(profile.top_genres))

        picks: List[Recommendation] = []
        for genre_info in profile.top_genres:
            taken = 0
            for title, author, reason in POPULAR_BY_GENRE.get(genre_info.genre, []):
                if len(picks) >= total or taken >= per_genre:
                    break
                if _norm(title) in owned:
                    continue
                picks.append(
                    Recommendation(
                        title=title,
                        author=author,
                        genre=genre_info.genre,
                        reason=reason,
                        confidence=self.config.FALLBACK_GENRE_CONFIDENCE,
                        source="rule-based-genre",
                    )
                )
                taken += 1
        return picks

    def _discovery_picks(
        self, profile: ReadingProfile, excluded: set[str], count: int
    ) -> List[Recommendation]:
        known_genres = {g.genre for g in profile.top_genres}
        picks: List[Recommendation] = []
        for title, author, genre, reason in DISCOVERY_BOOKS:
            if len(picks) >= count:
                break
            if genre in known_genres or _norm(title) in excluded:
                continue
            picks.append(
                Recommendation(
                    title=title,
                    author=author,
                    genre=genre,
                    reason=reason,
                    confidence=self.config.FALLBACK_DISCOVERY_CONFIDENCE,
                    source="rule-based-discovery",
                )
            )
        return picks
