"""Sitemap tree built from the flat list of crawled pages."""

from typing import Dict, List
from urllib.parse import urlsplit

from afterburn.models.discovery import PageData, SitemapNode
from afterburn.utils.urls import get_hostname


def _normalize_path(path: str) -> str:
    if not path or path == "/":
        return "/"
    return path[:-1] if path.endswith("/") else path


def _segments(path: str) -> List[str]:
    return [segment for segment in path.split("/") if segment]


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def build_sitemap(pages: List[PageData], root_url: str) -> SitemapNode:
    """
    Arrange pages into a tree by URL path.

    Uncrawled intermediate paths get placeholder nodes, pages with a query
    string hang under their path as separate children, and a synthetic
    "Home" root is used when ``/`` itself was not crawled.
    """
    root_hostname = get_hostname(root_url)
    origin = _origin(root_url)

    on_site = [page for page in pages if get_hostname(page.url) == root_hostname]

    root_page = next(
        (p for p in on_site if _normalize_path(urlsplit(p.url).path) == "/"),
        None,
    )
    if root_page is not None:
        root = SitemapNode(
            url=root_page.url,
            title=root_page.title or "Home",
            path="/",
            depth=0,
            page_data=root_page,
        )
    else:
        root = SitemapNode(
            url=root_url,
            title="Home",
            path="/",
            depth=0,
            page_data=PageData(url=root_url, title="Home"),
        )

    nodes_by_path: Dict[str, SitemapNode] = {"/": root}

    remaining = sorted(
        (p for p in on_site if _normalize_path(urlsplit(p.url).path) != "/"),
        key=lambda p: len(_segments(urlsplit(p.url).path)),
    )

    for page in remaining:
        parts = urlsplit(page.url)
        full_path = _normalize_path(parts.path)
        segments = _segments(full_path)

        current_path = ""
        parent = root
        for index, segment in enumerate(segments):
            current_path += "/" + segment
            node = nodes_by_path.get(current_path)

            if node is None:
                if index == len(segments) - 1:
                    node = SitemapNode(
                        url=page.url,
                        title=page.title or segment,
                        path=current_path,
                        depth=parent.depth + 1,
                        page_data=page,
                    )
                else:
                    title = segment[:1].upper() + segment[1:]
                    node = SitemapNode(
                        url=f"{origin}{current_path}",
                        title=title,
                        path=current_path,
                        depth=parent.depth + 1,
                        page_data=PageData(url=f"{origin}{current_path}", title=title),
                    )
                parent.children.append(node)
                nodes_by_path[current_path] = node

            parent = node

        if parts.query:
            parent.children.append(SitemapNode(
                url=page.url,
                title=page.title or f"Query: ?{parts.query}",
                path=f"{full_path}?{parts.query}",
                depth=parent.depth + 1,
                page_data=page,
            ))

    return root


def iter_nodes(node: SitemapNode):
    """Depth-first walk over ``node`` and all descendants."""
    yield node
    for child in node.children:
        yield from iter_nodes(child)


def print_sitemap_tree(
    node: SitemapNode,
    prefix: str = "",
    is_last: bool = True,
    is_root: bool = True,
) -> str:
    """
    Render the tree with box-drawing connectors::

        Home (/)
        ├── About (/about)
        └── Blog (/blog)
            └── Post One (/blog/post-one)
    """
    if is_root:
        output = f"{node.title} ({node.path})\n"
    else:
        connector = "└── " if is_last else "├── "
        output = f"{prefix}{connector}{node.title} ({node.path})\n"

    children = sorted(node.children, key=lambda child: child.path)
    for index, child in enumerate(children):
        child_prefix = "" if is_root else prefix + ("    " if is_last else "│   ")
        output += print_sitemap_tree(child, child_prefix, index == len(children) - 1, False)

    return output
