"""Field-fill merge: layer partial extractions onto one record."""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TypeVar

from bookresolver.request_log import RequestLog

logger = logging.getLogger(__name__)

T = TypeVar("T")

Extractor = Callable[[Any, Any], Optional[Mapping[str, Any]]]


def extractor_name(extractor) -> str:
    return getattr(extractor, "__name__", None) or extractor.__class__.__name__


def fill_fields(
    target: T,
    extractors: Sequence[Extractor],
    source: Any,
    log: Optional[RequestLog] = None,
    default_method: Optional[str] = "html",
) -> T:
    """
    Apply extractors to ``target`` in priority order.

    An extractor receives the raw source and the record built so far and
    returns a mapping of field name to value. Only fields still ``None``
    on the target are written, so an earlier extractor always wins. A
    failing extractor is logged and skipped.

    Args:
        target: Record to fill (mutated in place)
        extractors: Callables, highest priority first
        source: Raw input handed to every extractor
        log: Request log for extraction errors
        default_method: ``extraction_method`` used if no extractor contributed

    Returns:
        The same target
    """
    for extractor in extractors:
        name = extractor_name(extractor)
        try:
            values = extractor(source, target)
        except Exception as e:
            message = f"Extractor {name} failed: {e}"
            if log:
                log.error(message)
            else:
                logger.error(message)
            continue

        filled = apply_unset(target, values or {})
        if filled and hasattr(target, "extraction_method") and target.extraction_method is None:
            target.extraction_method = getattr(extractor, "method", name)

    if default_method and hasattr(target, "extraction_method") and target.extraction_method is None:
        target.extraction_method = default_method
    return target


def apply_unset(target: Any, values: Mapping[str, Any]) -> int:
    """Write values onto fields that are still None. Returns how many were set."""
    filled = 0
    for field_name, value in values.items():
        if value is None or not hasattr(target, field_name):
            continue
        if getattr(target, field_name) is not None:
            continue
        setattr(target, field_name, value)
        filled += 1
    return filled


@dataclass
class SelectorRule:
    """Candidate selectors for one field, plus optional post-processing."""
    field: str
    selectors: Sequence[str]
    attr: Optional[str] = None
    transform: Optional[Callable[[str], Any]] = None


def selector_extractor(rules: Sequence[SelectorRule], method: str = "html") -> Extractor:
    """Build an extractor over a ParsedDocument from a table of rules."""

    def extract(document, record) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for rule in rules:
            if getattr(record, rule.field, None) is not None:
                continue
            raw = document.find_first(rule.selectors, attr=rule.attr)
            if raw is None:
                continue
            value = rule.transform(raw) if rule.transform else raw
            if value is not None:
                values[rule.field] = value
        return values

    extract.__name__ = f"{method}_selectors"
    extract.method = method
    return extract
