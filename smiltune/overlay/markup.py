"""
Markup Module

Tree abstraction over chapter XHTML and the text-node splitter that
divides an element in two at an exact character offset.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Set, Tuple, Union

from bs4 import BeautifulSoup
from bs4.element import CData, NavigableString, PageElement, PreformattedString, Tag

XML_FEATURES = "lxml-xml"


def _is_text(node: PageElement) -> bool:
    """Text and CDATA carry characters; comments and the like do not."""
    if not isinstance(node, NavigableString):
        return False
    return not isinstance(node, PreformattedString) or isinstance(node, CData)


def flatten_text(node: PageElement) -> str:
    """Concatenated character content of a node, in document order."""
    if isinstance(node, Tag):
        return "".join(str(s) for s in node.descendants if _is_text(s))
    return str(node) if _is_text(node) else ""


def _shallow_clone(soup: BeautifulSoup, tag: Tag, keep_id: bool = True) -> Tag:
    attrs = dict(tag.attrs)
    if not keep_id:
        attrs.pop("id", None)
    return soup.new_tag(tag.name, namespace=tag.namespace, nsprefix=tag.prefix, attrs=attrs)


def _partition(
    soup: BeautifulSoup,
    children: List[PageElement],
    offset: int,
    depth: int,
) -> Tuple[List[PageElement], List[PageElement]]:
    """
    Partition a child list at a character offset.

    Text nodes are cut exactly. An element spanning the offset is
    cloned and its own children partitioned while depth remains.
    Past that depth, or when the offset falls on its first character,
    the element goes whole to the second half with its id intact.
    """
    first: List[PageElement] = []
    second: List[PageElement] = []
    consumed = 0
    done = False

    for child in children:
        if done:
            second.append(child)
            continue

        length = len(flatten_text(child))
        if consumed + length <= offset:
            first.append(child)
            consumed += length
            continue

        at = offset - consumed
        if isinstance(child, Tag):
            if depth > 0 and at > 0:
                head = _shallow_clone(soup, child)
                tail = _shallow_clone(soup, child, keep_id=False)
                inner_first, inner_second = _partition(
                    soup, list(child.contents), at, depth - 1
                )
                for node in inner_first:
                    head.append(node.extract())
                for node in inner_second:
                    tail.append(node.extract())
                if head.contents:
                    first.append(head)
                if tail.contents:
                    second.append(tail)
            else:
                second.append(child)
        else:
            text = str(child)
            if at > 0:
                first.append(NavigableString(text[:at]))
            second.append(NavigableString(text[at:]))
        done = True

    return first, second


@dataclass
class SplitResult:
    """Outcome of splitting one element in two."""

    first_id: str
    second_id: str
    first_text: str
    second_text: str

    @property
    def text(self) -> str:
        return self.first_text + self.second_text


def split_node(
    soup: BeautifulSoup,
    element: Tag,
    offset: int,
    id_factory: Callable[[], str],
    max_depth: int = 1,
) -> Tuple[Tag, Tag]:
    """
    Replace an element with two elements split at a character offset.

    Both halves keep the original tag name and attributes (apart from
    id) and receive fresh ids from id_factory. Nesting is divided only
    max_depth levels below the element; a deeper element that spans the
    offset lands whole in the second half.

    Args:
        soup: Document owning the element
        element: Element to split
        offset: Character offset over the element's flattened text
        id_factory: Returns a new unused id on each call
        max_depth: How many levels of child elements may be cloned

    Returns:
        (first, second) elements now in the document
    """
    length = len(flatten_text(element))
    if offset < 0 or offset > length:
        raise ValueError(f"Offset {offset} outside 0..{length}")

    first_nodes, second_nodes = _partition(soup, list(element.contents), offset, max_depth)

    first = _shallow_clone(soup, element, keep_id=False)
    second = _shallow_clone(soup, element, keep_id=False)
    first["id"] = id_factory()
    second["id"] = id_factory()
    for node in first_nodes:
        first.append(node.extract())
    for node in second_nodes:
        second.append(node.extract())

    if element.parent is not None:
        element.replace_with(first)
        first.insert_after(second)
    else:
        element.clear()
        element.append(first)
        element.append(second)
    return first, second


class MarkupDocument:
    """
    Mutable chapter markup.

    Wraps a parsed XHTML tree and exposes only what the overlay engine
    needs: id lookup, text extraction, splitting and serialization.
    """

    def __init__(self, source: Union[str, bytes]):
        self._soup = BeautifulSoup(source, features=XML_FEATURES)

    @property
    def soup(self) -> BeautifulSoup:
        return self._soup

    @property
    def title(self) -> Optional[str]:
        tag = self._soup.find("title")
        if tag is None:
            return None
        text = flatten_text(tag).strip()
        return text or None

    def find_by_id(self, element_id: str) -> Optional[Tag]:
        if not element_id:
            return None
        return self._soup.find(attrs={"id": element_id})

    def ids(self) -> Set[str]:
        return {tag["id"] for tag in self._soup.find_all(attrs={"id": True})}

    def text_of(self, element_id: str) -> Optional[str]:
        element = self.find_by_id(element_id)
        return flatten_text(element) if element is not None else None

    def new_id(self, base: str) -> str:
        """Return an id derived from base that is not used in the document."""
        existing = self.ids()
        n = 1
        while f"{base}-s{n}" in existing:
            n += 1
        return f"{base}-s{n}"

    def split_element(self, element_id: str, offset: int, max_depth: int = 1) -> SplitResult:
        """Split the element with element_id in place at offset."""
        element = self.find_by_id(element_id)
        if element is None:
            raise KeyError(element_id)

        taken = self.ids()

        def next_id() -> str:
            n = 1
            while f"{element_id}-s{n}" in taken:
                n += 1
            candidate = f"{element_id}-s{n}"
            taken.add(candidate)
            return candidate

        first, second = split_node(self._soup, element, offset, next_id, max_depth)
        return SplitResult(
            first_id=first["id"],
            second_id=second["id"],
            first_text=flatten_text(first),
            second_text=flatten_text(second),
        )

    def serialize(self) -> str:
        return str(self._soup)

    def copy(self) -> "MarkupDocument":
        return MarkupDocument(self.serialize().encode("utf-8"))

    def __str__(self) -> str:
        return self.serialize()
