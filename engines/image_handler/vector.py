"""Minimal SVG support: parse a small subset of SVG and rasterize it with Pillow.

Supported elements: ``g``, ``rect``, ``circle``, ``ellipse``, ``path`` (straight
segments only) and ``text``. Presentation attributes are read inline; CSS classes
are not.
"""
from __future__ import annotations

import math
import re
import xml.etree.ElementTree as ET
from typing import List, Optional, Tuple

from PIL import Image, ImageColor, ImageDraw, ImageFont
from pydantic import BaseModel, Field

Matrix = Tuple[float, float, float, float, float, float]
_ANCHORS = {"start": "ls", "middle": "ms", "end": "rs"}


class VectorStyle(BaseModel):
    fill_color: Optional[str] = None
    opacity: float = 1.0
    font_size: Optional[float] = None
    text_anchor: Optional[str] = None


class VectorTransform(BaseModel):
    x: float = 0.0
    y: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0

    def matrix(self) -> Matrix:
        return (self.scale_x, 0.0, 0.0, self.scale_y, self.x, self.y)


class VectorNode(BaseModel):
    type: str
    transform: VectorTransform = Field(default_factory=VectorTransform)
    style: VectorStyle = Field(default_factory=VectorStyle)


class GroupNode(VectorNode):
    type: str = "group"
    children: List[VectorNode] = Field(default_factory=list)


class RectNode(VectorNode):
    type: str = "rect"
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class EllipseNode(VectorNode):
    type: str = "ellipse"
    cx: float = 0.0
    cy: float = 0.0
    rx: float = 0.0
    ry: float = 0.0


class PathNode(VectorNode):
    type: str = "path"
    points: List[Tuple[float, float]] = Field(default_factory=list)
    closed: bool = False


class TextNode(VectorNode):
    type: str = "text"
    x: float = 0.0
    y: float = 0.0
    text: str = ""


class VectorScene(BaseModel):
    width: float
    height: float
    root: GroupNode = Field(default_factory=GroupNode)


def _number(value: Optional[str], default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value.strip().replace("px", ""))
    except ValueError:
        return default


class SVGParser:
    def parse(self, content: str) -> VectorScene:
        root = ET.fromstring(content)
        view_box = root.attrib.get("viewBox")
        if view_box:
            parts = [float(v) for v in re.split(r"[ ,]+", view_box.strip()) if v]
            width, height = parts[2], parts[3]
        else:
            width = _number(root.attrib.get("width"), 100.0)
            height = _number(root.attrib.get("height"), 100.0)
        scene = VectorScene(width=width, height=height)
        scene.root.children = self._parse_children(root)
        return scene

    def _parse_children(self, element: ET.Element) -> List[VectorNode]:
        nodes: List[VectorNode] = []
        for child in element:
            tag = child.tag.split("}")[-1]
            attrs = child.attrib
            style = self._parse_style(child)
            transform = self._parse_transform(attrs.get("transform", ""))
            node: Optional[VectorNode] = None

            if tag == "g":
                node = GroupNode(style=style, transform=transform, children=self._parse_children(child))
            elif tag == "rect":
                node = RectNode(
                    x=_number(attrs.get("x")),
                    y=_number(attrs.get("y")),
                    width=_number(attrs.get("width")),
                    height=_number(attrs.get("height")),
                    style=style,
                    transform=transform,
                )
            elif tag == "circle":
                r = _number(attrs.get("r"))
                node = EllipseNode(
                    cx=_number(attrs.get("cx")), cy=_number(attrs.get("cy")), rx=r, ry=r, style=style, transform=transform
                )
            elif tag == "ellipse":
                node = EllipseNode(
                    cx=_number(attrs.get("cx")),
                    cy=_number(attrs.get("cy")),
                    rx=_number(attrs.get("rx")),
                    ry=_number(attrs.get("ry")),
                    style=style,
                    transform=transform,
                )
            elif tag == "path":
                points, closed = self._parse_path(attrs.get("d", ""))
                node = PathNode(points=points, closed=closed, style=style, transform=transform)
            elif tag == "text":
                node = TextNode(
                    x=_number(attrs.get("x")),
                    y=_number(attrs.get("y")),
                    text="".join(child.itertext()).strip(),
                    style=style,
                    transform=transform,
                )

            if node:
                nodes.append(node)
        return nodes

    def _parse_style(self, element: ET.Element) -> VectorStyle:
        attrs = dict(element.attrib)
        for decl in attrs.pop("style", "").split(";"):
            if ":" in decl:
                key, value = decl.split(":", 1)
                attrs[key.strip()] = value.strip()
        style = VectorStyle()
        if "fill" in attrs:
            style.fill_color = attrs["fill"]
        if "opacity" in attrs:
            style.opacity = _number(attrs["opacity"], 1.0)
        if "font-size" in attrs:
            style.font_size = _number(attrs["font-size"])
        if "text-anchor" in attrs:
            style.text_anchor = attrs["text-anchor"]
        return style

    def _parse_transform(self, attr: str) -> VectorTransform:
        transform = VectorTransform()
        for match in re.finditer(r"([a-zA-Z]+)\(([^)]+)\)", attr):
            name = match.group(1)
            params = [float(v) for v in re.split(r"[ ,]+", match.group(2).strip()) if v]
            if name == "translate":
                transform.x += params[0]
                if len(params) > 1:
                    transform.y += params[1]
            elif name == "scale":
                transform.scale_x *= params[0]
                transform.scale_y *= params[1] if len(params) > 1 else params[0]
        return transform

    def _parse_path(self, data: str):
        tokens = re.findall(r"[A-Za-z]|-?\d*\.?\d+(?:e-?\d+)?", data)
        points: List[Tuple[float, float]] = []
        closed = False
        cmd: Optional[str] = None
        pending: List[float] = []
        x = y = 0.0
        for token in tokens:
            if token.isalpha():
                cmd = token
                pending = []
                if cmd in "Zz":
                    closed = True
                continue
            pending.append(float(token))
            if cmd in ("M", "L", "m", "l") and len(pending) == 2:
                if cmd.islower():
                    x, y = x + pending[0], y + pending[1]
                else:
                    x, y = pending
                points.append((x, y))
                pending = []
            elif cmd in ("H", "h", "V", "v") and len(pending) == 1:
                value = pending[0]
                if cmd == "H":
                    x = value
                elif cmd == "h":
                    x += value
                elif cmd == "V":
                    y = value
                else:
                    y += value
                points.append((x, y))
                pending = []
        return points, closed


class VectorRenderer:
    def __init__(self, font_path: Optional[str] = None):
        self.font_path = font_path

    def render(self, scene: VectorScene, width: Optional[int] = None, height: Optional[int] = None) -> Image.Image:
        w = width or int(math.ceil(scene.width))
        h = height or int(math.ceil(scene.height))
        canvas = Image.new("RGBA", (w, h), (0, 0, 0, 0))
        base: Matrix = (w / scene.width, 0.0, 0.0, h / scene.height, 0.0, 0.0)
        return self._render_node(canvas, scene.root, base, "#000000", 1.0)

    def _render_node(self, canvas: Image.Image, node: VectorNode, matrix: Matrix, fill: Optional[str], opacity: float) -> Image.Image:
        combined = self._combine_matrix(matrix, node.transform.matrix())
        fill = node.style.fill_color if node.style.fill_color is not None else fill
        opacity = opacity * node.style.opacity
        if isinstance(node, GroupNode):
            for child in node.children:
                canvas = self._render_node(canvas, child, combined, fill, opacity)
            return canvas

        color = self._color_with_opacity(fill, opacity)
        if color is None:
            return canvas
        layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)
        if isinstance(node, RectNode):
            corners = [
                (node.x, node.y),
                (node.x + node.width, node.y),
                (node.x + node.width, node.y + node.height),
                (node.x, node.y + node.height),
            ]
            draw.polygon([self._apply_matrix(combined, p) for p in corners], fill=color)
        elif isinstance(node, EllipseNode):
            self._draw_ellipse(draw, node, combined, color)
        elif isinstance(node, PathNode):
            poly = [self._apply_matrix(combined, p) for p in node.points]
            if len(poly) >= 3:
                draw.polygon(poly, fill=color)
        elif isinstance(node, TextNode):
            self._draw_text(draw, node, combined, color)
        return Image.alpha_composite(canvas, layer)

    def _draw_ellipse(self, draw: ImageDraw.ImageDraw, node: EllipseNode, matrix: Matrix, color) -> None:
        a, b, c, d, _, _ = matrix
        if b == 0 and c == 0:
            x0, y0 = self._apply_matrix(matrix, (node.cx - node.rx, node.cy - node.ry))
            x1, y1 = self._apply_matrix(matrix, (node.cx + node.rx, node.cy + node.ry))
            draw.ellipse([min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1)], fill=color)
            return
        segments = 128
        points = []
        for i in range(segments):
            theta = 2 * math.pi * i / segments
            point = (node.cx + math.cos(theta) * node.rx, node.cy + math.sin(theta) * node.ry)
            points.append(self._apply_matrix(matrix, point))
        draw.polygon(points, fill=color)

    def _draw_text(self, draw: ImageDraw.ImageDraw, node: TextNode, matrix: Matrix, color) -> None:
        if not node.text:
            return
        size = max(1, int(round((node.style.font_size or 12) * abs(matrix[3]))))
        font = self._load_font(size)
        anchor = _ANCHORS.get(node.style.text_anchor or "start", "ls")
        draw.text(self._apply_matrix(matrix, (node.x, node.y)), node.text, fill=color, font=font, anchor=anchor)

    def _load_font(self, size: int):
        if self.font_path:
            try:
                return ImageFont.truetype(self.font_path, size=size)
            except OSError:
                pass
        return ImageFont.load_default(size=size)

    def _color_with_opacity(self, color: Optional[str], opacity: float):
        if not color or color == "none":
            return None
        try:
            rgb = ImageColor.getrgb(color)
        except ValueError:
            return None
        alpha = rgb[3] if len(rgb) == 4 else 255
        return (*rgb[:3], int(alpha * max(0.0, min(opacity, 1.0))))

    def _apply_matrix(self, matrix: Matrix, point: Tuple[float, float]) -> Tuple[float, float]:
        a, b, c, d, tx, ty = matrix
        x, y = point
        return (a * x + c * y + tx, b * x + d * y + ty)

    def _combine_matrix(self, base: Matrix, overlay: Matrix) -> Matrix:
        a1, b1, c1, d1, tx1, ty1 = base
        a2, b2, c2, d2, tx2, ty2 = overlay
        return (
            a1 * a2 + c1 * b2,
            b1 * a2 + d1 * b2,
            a1 * c2 + c1 * d2,
            b1 * c2 + d1 * d2,
            a1 * tx2 + c1 * ty2 + tx1,
            b1 * tx2 + d1 * ty2 + ty1,
        )


def render_svg(content: str, width: Optional[int] = None, height: Optional[int] = None, font_path: Optional[str] = None) -> Image.Image:
    scene = SVGParser().parse(content)
    return VectorRenderer(font_path=font_path).render(scene, width=width, height=height)
