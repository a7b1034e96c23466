import unittest

from engines.image_handler.vector import EllipseNode, GroupNode, PathNode, RectNode, SVGParser, TextNode, render_svg


class TestSVGParser(unittest.TestCase):
    def test_parse_scene(self):
        svg = """
        <svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 200 100">
          <g opacity="0.5" transform="translate(10 20) scale(2)">
            <rect x="1" y="2" width="3" height="4" style="fill: #ff0000"/>
            <circle cx="5" cy="5" r="2"/>
          </g>
          <path d="M0,0 l10,0 v10 H0 Z"/>
          <text font-size="12" text-anchor="middle">hello</text>
        </svg>
        """
        scene = SVGParser().parse(svg)
        self.assertEqual((scene.width, scene.height), (200.0, 100.0))
        group, path, text = scene.root.children
        self.assertIsInstance(group, GroupNode)
        self.assertEqual(group.style.opacity, 0.5)
        self.assertEqual((group.transform.x, group.transform.y, group.transform.scale_x), (10.0, 20.0, 2.0))

        rect, circle = group.children
        self.assertIsInstance(rect, RectNode)
        self.assertEqual(rect.style.fill_color, "#ff0000")
        self.assertIsInstance(circle, EllipseNode)
        self.assertEqual((circle.rx, circle.ry), (2.0, 2.0))

        self.assertIsInstance(path, PathNode)
        self.assertEqual(path.points, [(0.0, 0.0), (10.0, 0.0), (10.0, 10.0), (0.0, 10.0)])
        self.assertTrue(path.closed)

        self.assertIsInstance(text, TextNode)
        self.assertEqual(text.text, "hello")
        self.assertEqual(text.style.text_anchor, "middle")

    def test_size_without_viewbox(self):
        scene = SVGParser().parse('<svg width="40px" height="30"></svg>')
        self.assertEqual((scene.width, scene.height), (40.0, 30.0))


class TestRender(unittest.TestCase):
    def test_viewbox_scaled_to_output(self):
        svg = '<svg viewBox="0 0 10 10"><rect x="0" y="0" width="5" height="10" fill="#00ff00"/></svg>'
        img = render_svg(svg, width=100, height=100)
        self.assertEqual(img.size, (100, 100))
        self.assertEqual(img.getpixel((20, 50)), (0, 255, 0, 255))
        self.assertEqual(img.getpixel((80, 50))[3], 0)

    def test_default_fill_is_black(self):
        img = render_svg('<svg viewBox="0 0 10 10"><ellipse cx="5" cy="5" rx="5" ry="5"/></svg>')
        self.assertEqual(img.getpixel((5, 5)), (0, 0, 0, 255))
        self.assertEqual(img.getpixel((0, 0))[3], 0)

    def test_group_opacity(self):
        svg = '<svg viewBox="0 0 10 10"><g opacity="0.2"><rect width="10" height="10" fill="#000000"/></g></svg>'
        img = render_svg(svg)
        self.assertEqual(img.getpixel((5, 5))[3], 51)

    def test_fill_none_draws_nothing(self):
        img = render_svg('<svg viewBox="0 0 10 10"><rect width="10" height="10" fill="none"/></svg>')
        self.assertEqual(img.getchannel("A").getextrema(), (0, 0))


if __name__ == "__main__":
    unittest.main()
