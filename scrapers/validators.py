"""
Validateurs de réponse: une réponse "suffisante" arrête la recherche de fournisseur.

Vérification structurelle uniquement; des données anciennes mais complètes passent.
"""

from typing import Any, Callable, Dict


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _non_empty_text(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_valid_info(info: Any) -> bool:
    """Titre non vide ET au moins un chapitre"""
    if info is None:
        return False
    chapters = _field(info, "chapters")
    return _non_empty_text(_field(info, "title")) and bool(chapters)


def is_valid_result_page(page: Any) -> bool:
    """Au moins un résultat (search, latest, genre, advanced_search)"""
    if page is None:
        return False
    return bool(_field(page, "results"))


def is_valid_pages(pages: Any) -> bool:
    """Liste non vide avec au moins une image"""
    if not isinstance(pages, (list, tuple)) or not pages:
        return False
    return any(
        _non_empty_text(_field(p, "image_url")) or _non_empty_text(_field(p, "imageUrl"))
        for p in pages
    )


def is_valid_genres(genres: Any) -> bool:
    return bool(genres)


VALIDATORS: Dict[str, Callable[[Any], bool]] = {
    "info": is_valid_info,
    "search": is_valid_result_page,
    "latest": is_valid_result_page,
    "genre": is_valid_result_page,
    "advanced_search": is_valid_result_page,
    "read": is_valid_pages,
    "genres": is_valid_genres,
}


def validate(operation: str, result: Any) -> bool:
    try:
        validator = VALIDATORS[operation]
    except KeyError:
        raise ValueError(f"No validator for operation '{operation}'") from None
    return validator(result)
