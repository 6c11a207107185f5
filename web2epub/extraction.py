"""CSS selector evaluation and the interactive selector tester."""
import logging
from dataclasses import dataclass
from typing import List, Optional, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from .errors import SelectorError

logger = logging.getLogger(__name__)

RETURN_TYPES = ("text", "html", "attribute")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def resolve_url(href: Optional[str], base_url: str) -> str:
    if not href:
        return ""
    return urljoin(base_url, href.strip())


def inner_html(el: Optional[Tag]) -> str:
    if el is None:
        return ""
    return "".join(str(x) for x in el.contents)


def select_text(doc: Union[BeautifulSoup, Tag], selector: str) -> str:
    """Stripped text of the first match, or "" when the selector is empty or misses."""
    if not selector:
        return ""
    el = doc.select_one(selector)
    return el.get_text(strip=True) if el else ""


def extract_value(el: Tag, return_type: str, attribute: str = "", base_url: str = "") -> str:
    if return_type == "text":
        return el.get_text(strip=True)
    if return_type == "html":
        return inner_html(el)
    if return_type == "attribute":
        value = el.get(attribute) if attribute else None
        if isinstance(value, list):
            value = " ".join(value)
        if not value:
            return ""
        return resolve_url(value, base_url)
    raise ValueError(f"unknown return type {return_type!r}")


@dataclass
class SelectorTest:
    url: str
    selector: str
    return_type: str = "text"
    attribute: str = ""
    multi: bool = False


def run_selector(doc: BeautifulSoup, test: SelectorTest) -> Union[str, List[str]]:
    """Evaluate a SelectorTest against an already parsed page."""
    try:
        return _run_selector(doc, test)
    except SelectorSyntaxError as e:
        raise SelectorError(f'Invalid selector "{test.selector}": {e}') from e


def _run_selector(doc: BeautifulSoup, test: SelectorTest) -> Union[str, List[str]]:
    if test.return_type not in RETURN_TYPES:
        raise SelectorError(f"Unknown return type {test.return_type!r}.")
    if test.return_type == "attribute" and not test.attribute:
        raise SelectorError("An attribute name is required for the attribute return type.")

    if test.multi:
        els = doc.select(test.selector)
        if not els:
            raise SelectorError(f'Selector "{test.selector}" did not match any elements.')
        values: List[str] = []
        for el in els:
            # html is not collected in multi mode
            if test.return_type == "text":
                v = el.get_text(strip=True)
            elif test.return_type == "attribute":
                v = extract_value(el, "attribute", test.attribute, test.url)
            else:
                v = ""
            if v:
                values.append(v)
        if not values:
            raise SelectorError(f'Selector "{test.selector}" matched elements, but they produced no content.')
        return values

    el = doc.select_one(test.selector)
    if el is None:
        raise SelectorError(f'Selector "{test.selector}" did not match any elements.')
    value = extract_value(el, test.return_type, test.attribute, test.url)
    if not value:
        raise SelectorError(f'Selector "{test.selector}" matched an element, but it produced no content.')
    return value


async def test_selector(fetcher, test: SelectorTest) -> Union[str, List[str]]:
    """Fetch test.url once and evaluate the selector. No cache, no retry."""
    html = await fetcher.fetch_html(test.url)
    logger.debug("testing %r on %s", test.selector, test.url)
    return run_selector(parse_html(html), test)


# pytest would otherwise try to collect the coroutine above
test_selector.__test__ = False
