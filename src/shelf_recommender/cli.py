import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from common.structured_logging import get_logger

from .engine import RecommendationEngine
from .errors import RecommendationEngineError
from .models import DetectedBook
from .profile import analyze_reading_profile

app = typer.Typer(help="Shelf-scan book recommender CLI")
logger = get_logger(__name__)


def _load_json(path: Path):
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        typer.echo(f"❌  Could not read {path}: {e}", err=True)
        raise typer.Exit(code=2)


# ---------------------------------------------------------------------
# recommend
# ---------------------------------------------------------------------
@app.command()
def recommend(
    books: Path = typer.Argument(..., help="JSON file with the detected books"),
    preferences: Optional[Path] = typer.Option(None, help="JSON file with user preferences"),
    max_recommendations: Optional[int] = typer.Option(None, "--max", min=1, max=100),
    include_metadata: bool = typer.Option(True, help="Enrich via Google Books when a key is set"),
    session_id: Optional[str] = typer.Option(None, help="Session id for statistics"),
):
    """Print the recommendation envelope (camelCase JSON) for a shelf."""
    book_data = _load_json(books)
    pref_data = _load_json(preferences) if preferences else None
    options = {"max_recommendations": max_recommendations, "include_metadata": include_metadata}

    engine = RecommendationEngine()
    try:
        result = asyncio.run(
            engine.generate_recommendations(book_data, pref_data, session_id, options)
        )
    except RecommendationEngineError as e:
        typer.echo(json.dumps({"error": e.to_dict()}, indent=2, default=str), err=True)
        raise typer.Exit(code=1)

    typer.echo(result.model_dump_json(by_alias=True, indent=2))


# ---------------------------------------------------------------------
# profile
# ---------------------------------------------------------------------
@app.command()
def profile(books: Path = typer.Argument(..., help="JSON file with the detected books")):
    """Print the reading profile derived from a shelf."""
    book_data = _load_json(books)
    if not isinstance(book_data, list):
        typer.echo("❌  Expected a JSON list of books", err=True)
        raise typer.Exit(code=2)
    try:
        detected = [DetectedBook.model_validate(b) for b in book_data]
    except ValueError as e:
        typer.echo(f"❌  Malformed book list: {e}", err=True)
        raise typer.Exit(code=2)

    result = analyze_reading_profile([b for b in detected if b.title])
    typer.echo(result.model_dump_json(by_alias=True, indent=2))


if __name__ == "__main__":
    app()
