import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from cms_starter.scaffold import WORKFLOW_PATH, ScaffoldError, Scaffolder, TemplateContext
from cms_starter.scaffold.templates import collection_file, render


EVENTS = {
    "name": "Events",
    "slug": "events",
    "admin": {"useAsTitle": "title"},
    "fields": [
        {"name": "title", "type": "text", "required": True},
        {"name": "kind", "type": "select", "options": [{"label": "Talk", "value": "talk"}]},
        {"name": "page", "type": "relationship", "relationTo": "pages", "hasMany": False},
    ],
}


class ScaffolderTests(unittest.TestCase):
    def _context(self, **overrides) -> TemplateContext:
        values = dict(
            project_name="My Site",
            project_slug="my-site",
            admin_email="admin@example.com",
            website_url="https://example.com/blog",
            website_path="/blog",
        )
        values.update(overrides)
        return TemplateContext(**values)

    def test_generates_project_tree(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "my-site"
            written = Scaffolder().generate(target, self._context())

            self.assertTrue((target / "payload" / "package.json").is_file())
            self.assertTrue((target / "payload" / "src" / "payload.config.ts").is_file())
            self.assertTrue((target / "web" / "nuxt.config.ts").is_file())
            self.assertTrue((target / WORKFLOW_PATH).is_file())
            self.assertIn(target / "README.md", written)

            package = json.loads((target / "payload" / "package.json").read_text(encoding="utf-8"))
            self.assertEqual(package["name"], "my-site-cms")

            nuxt = (target / "web" / "nuxt.config.ts").read_text(encoding="utf-8")
            self.assertIn("baseURL: '/blog/'", nuxt)

            readme = (target / "README.md").read_text(encoding="utf-8")
            self.assertIn("# My Site", readme)
            self.assertIn("admin@example.com", readme)
            self.assertNotIn("{{", readme)

    def test_root_site_has_no_base_url(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "site"
            Scaffolder().generate(target, self._context(website_url="https://example.com", website_path=""))
            nuxt = (target / "web" / "nuxt.config.ts").read_text(encoding="utf-8")
            self.assertNotIn("baseURL", nuxt)
            self.assertNotIn("{{base_url_config}}", nuxt)

    def test_extra_collections_are_registered(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            target = Path(tmp) / "site"
            Scaffolder().generate(target, self._context(collections=[EVENTS]))

            config = (target / "payload" / "src" / "payload.config.ts").read_text(encoding="utf-8")
            self.assertIn("import { Events } from './collections/Events'", config)
            self.assertIn("collections: [Pages, Media, Users, Events]", config)
            self.assertTrue((target / "payload" / "src" / "collections" / "Events.ts").is_file())

    def test_filesystem_errors_are_wrapped(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with mock.patch.object(Path, "write_text", side_effect=PermissionError("read-only")):
                with self.assertRaises(ScaffoldError):
                    Scaffolder().generate(Path(tmp) / "site", self._context())


class TemplateTests(unittest.TestCase):
    def test_render_only_touches_known_placeholders(self) -> None:
        text = render("{{name}} ${{ secrets.X }} {{ page.title }} {{other}}", {"name": "a"})
        self.assertEqual(text, "a ${{ secrets.X }} {{ page.title }} {{other}}")

    def test_collection_file(self) -> None:
        source = collection_file(EVENTS)
        self.assertIn("export const Events: CollectionConfig", source)
        self.assertIn("slug: 'events'", source)
        self.assertIn("useAsTitle: 'title'", source)
        self.assertIn("relationTo: 'pages'", source)
        self.assertIn("hasMany: false", source)
        self.assertIn("{ label: 'Talk', value: 'talk' }", source)
        self.assertIn("triggerDeploy", source)


if __name__ == "__main__":
    unittest.main()
