from __future__ import annotations

from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Iterator, Union


_VOID_TAGS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "param", "source", "track", "wbr"}
)


@dataclass(eq=False)
class Element:
    """
    极简 DOM 节点：只覆盖页面解析需要的查询（按标签、class、属性）。
    """

    tag: str
    attrs: dict[str, str | None] = field(default_factory=dict)
    children: list[Union[Element, str]] = field(default_factory=list)
    parent: Element | None = field(default=None, repr=False)

    @property
    def classes(self) -> frozenset[str]:
        return frozenset((self.attrs.get("class") or "").split())

    def has_class(self, name: str) -> bool:
        return name in self.classes

    def get(self, name: str, default: str | None = None) -> str | None:
        if name not in self.attrs:
            return default
        value = self.attrs[name]
        return "" if value is None else value

    def text(self) -> str:
        parts: list[str] = []
        for child in self.children:
            if isinstance(child, str):
                parts.append(child)
            else:
                parts.append(child.text())
        return "".join(parts)

    def iter(self) -> Iterator[Element]:
        for child in self.children:
            if isinstance(child, Element):
                yield child
                yield from child.iter()

    def find_all(
        self,
        tag: str | None = None,
        *,
        class_: str | None = None,
        attrs: dict[str, str | None] | None = None,
    ) -> list[Element]:
        """
        attrs 中值为 None 表示只要求属性存在。
        """
        out: list[Element] = []
        for el in self.iter():
            if tag is not None and el.tag != tag:
                continue
            if class_ is not None and not el.has_class(class_):
                continue
            if attrs and not all(
                k in el.attrs and (v is None or el.attrs[k] == v) for k, v in attrs.items()
            ):
                continue
            out.append(el)
        return out

    def find(
        self,
        tag: str | None = None,
        *,
        class_: str | None = None,
        attrs: dict[str, str | None] | None = None,
    ) -> Element | None:
        found = self.find_all(tag, class_=class_, attrs=attrs)
        return found[0] if found else None


class _TreeBuilder(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = Element(tag="#document")
        self._stack: list[Element] = [self.root]

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        parent = self._stack[-1]
        el = Element(tag=tag, attrs=dict(attrs), parent=parent)
        parent.children.append(el)
        if tag == "br":
            el.children.append("\n")
        if tag not in _VOID_TAGS:
            self._stack.append(el)

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        parent = self._stack[-1]
        el = Element(tag=tag, attrs=dict(attrs), parent=parent)
        parent.children.append(el)
        if tag == "br":
            el.children.append("\n")

    def handle_endtag(self, tag: str) -> None:
        # 容错：未闭合的中间节点一并弹出；找不到匹配的开始标签则忽略
        for i in range(len(self._stack) - 1, 0, -1):
            if self._stack[i].tag == tag:
                del self._stack[i:]
                return

    def handle_data(self, data: str) -> None:
        self._stack[-1].children.append(data)


def parse_html(markup: str) -> Element:
    builder = _TreeBuilder()
    builder.feed(markup)
    builder.close()
    return builder.root
