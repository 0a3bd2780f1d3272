"""Writes the CMS project tree (Payload app, Nuxt site, CI workflow)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from ..errors import ProvisioningError
from . import templates

logger = logging.getLogger(__name__)

WORKFLOW_PATH = ".github/workflows/deploy.yml"


class ScaffoldError(ProvisioningError):
    """Raised when the project tree cannot be written."""


@dataclass
class TemplateContext:
    """Values substituted into the generated files."""
    project_name: str
    project_slug: str
    admin_email: str
    website_url: str = ""
    website_path: str = ""
    collections: List[Dict[str, Any]] = field(default_factory=list)


class Scaffolder:
    """Generates the project files for one CMS site."""

    def generate(self, target_dir: Path, context: TemplateContext) -> List[Path]:
        """Write every file under `target_dir` and return the written paths.

        Raises:
            ScaffoldError: wrapping any filesystem failure.
        """
        target_dir = Path(target_dir)
        try:
            files = self._files(context)
            written = []
            for relative, content in files.items():
                path = target_dir / relative
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content, encoding="utf-8")
                written.append(path)
        except OSError as exc:
            raise ScaffoldError(f"Failed to scaffold project: {exc}") from exc

        logger.info("🏗️  Generated %d files in %s", len(written), target_dir)
        return written

    def _files(self, context: TemplateContext) -> Dict[str, str]:
        collections = context.collections
        imports = "".join(
            f"import {{ {c['name']} }} from './collections/{c['name']}'\n" for c in collections
        )
        names = "".join(f", {c['name']}" for c in collections)
        base_url = (
            f"\n  app: {{\n    baseURL: '{context.website_path}/',\n  }},\n"
            if context.website_path else ""
        )

        files: Dict[str, str] = {
            # payload/
            "payload/package.json": templates.payload_package_json(
                context.project_slug, context.project_name
            ),
            "payload/tsconfig.json": templates.PAYLOAD_TSCONFIG,
            "payload/next.config.mjs": templates.NEXT_CONFIG,
            "payload/next-env.d.ts": templates.NEXT_ENV,
            "payload/Dockerfile": templates.PAYLOAD_DOCKERFILE,
            "payload/nixpacks.toml": templates.NIXPACKS_TOML,
            "payload/railway.toml": templates.RAILWAY_TOML,
            "payload/.gitignore": templates.PAYLOAD_GITIGNORE,
            "payload/public/uploads/.gitkeep": "",
            "payload/src/migrations/.gitkeep": "",
            "payload/src/payload.config.ts": templates.render(templates.PAYLOAD_CONFIG, {
                "collection_imports": imports,
                "collection_names": names,
            }),
            "payload/src/collections/Pages.ts": templates.PAGES_COLLECTION,
            "payload/src/collections/Media.ts": templates.MEDIA_COLLECTION,
            "payload/src/collections/Users.ts": templates.USERS_COLLECTION,
            "payload/src/hooks/triggerDeploy.ts": templates.TRIGGER_DEPLOY_HOOK,
            "payload/src/app/(payload)/layout.tsx": templates.ADMIN_LAYOUT,
            "payload/src/app/(payload)/admin/[[...segments]]/page.tsx": templates.ADMIN_PAGE,
            "payload/src/app/(payload)/admin/importMap.ts": templates.ADMIN_IMPORT_MAP,
            "payload/src/app/(payload)/api/[...slug]/route.ts": templates.REST_ROUTE,
            "payload/src/app/(payload)/api/graphql/route.ts": templates.GRAPHQL_ROUTE,
            # web/
            "web/package.json": templates.WEB_PACKAGE_JSON,
            "web/nuxt.config.ts": templates.render(templates.NUXT_CONFIG, {"base_url_config": base_url}),
            "web/.gitignore": templates.WEB_GITIGNORE,
            "web/app/app.vue": templates.WEB_APP_VUE,
            "web/app/pages/index.vue": templates.WEB_INDEX_PAGE,
            "web/app/pages/[slug].vue": templates.WEB_SLUG_PAGE,
            "web/app/components/PageContent.vue": templates.WEB_PAGE_CONTENT,
            "web/app/composables/usePayload.ts": templates.WEB_USE_PAYLOAD,
            # root
            ".gitignore": templates.ROOT_GITIGNORE,
            "README.md": templates.render(templates.README, {
                "project_name": context.project_name,
                "website_url": context.website_url or "(not configured)",
                "admin_email": context.admin_email,
            }),
            WORKFLOW_PATH: templates.DEPLOY_WORKFLOW,
        }
        for collection in collections:
            files[f"payload/src/collections/{collection['name']}.ts"] = templates.collection_file(collection)
        return files
