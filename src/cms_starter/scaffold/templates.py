"""File templates for the generated CMS project.

Placeholders are written as ``{{name}}`` and filled by `render`; any other
brace sequence (JS template literals, GitHub expressions) is left alone.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List

_PLACEHOLDER = re.compile(r"\{\{([a-z_]+)\}\}")


def render(template: str, values: Dict[str, str]) -> str:
    """Replace ``{{key}}`` for every key in `values`; unknown keys stay verbatim."""
    return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2) + "\n"


# ----------------------------------------------------------------------
# payload/
# ----------------------------------------------------------------------


def payload_package_json(project_slug: str, project_name: str) -> str:
    return to_json({
        "name": f"{project_slug}-cms",
        "version": "1.0.0",
        "description": f"Payload CMS for {project_name}",
        "type": "module",
        "scripts": {
            "dev": "next dev",
            "build": "payload generate:importmap && next build",
            "start": "next start",
            "migrate": "payload migrate",
            "generate:types": "payload generate:types",
            "generate:importmap": "payload generate:importmap",
        },
        "dependencies": {
            "@payloadcms/db-postgres": "^3.0.0",
            "@payloadcms/next": "^3.0.0",
            "@payloadcms/richtext-lexical": "^3.0.0",
            "graphql": "^16.9.0",
            "next": "^15.0.0",
            "payload": "^3.0.0",
            "react": "^19.0.0",
            "react-dom": "^19.0.0",
            "sharp": "^0.33.5",
        },
        "devDependencies": {
            "@types/node": "^22.10.0",
            "@types/react": "^19.0.0",
            "@types/react-dom": "^19.0.0",
            "typescript": "^5.7.0",
        },
    })


PAYLOAD_TSCONFIG = to_json({
    "compilerOptions": {
        "target": "ES2017",
        "lib": ["DOM", "DOM.Iterable", "ES2017"],
        "allowJs": True,
        "skipLibCheck": True,
        "strict": True,
        "noEmit": True,
        "esModuleInterop": True,
        "module": "ESNext",
        "moduleResolution": "bundler",
        "resolveJsonModule": True,
        "isolatedModules": True,
        "jsx": "preserve",
        "incremental": True,
        "plugins": [{"name": "next"}],
        "paths": {
            "@/*": ["./src/*"],
            "@payload-config": ["./src/payload.config.ts"],
        },
        "baseUrl": ".",
    },
    "include": ["next-env.d.ts", "**/*.ts", "**/*.tsx", ".next/types/**/*.ts"],
    "exclude": ["node_modules"],
})

NEXT_CONFIG = """import { withPayload } from '@payloadcms/next/withPayload'

/** @type {import('next').NextConfig} */
const nextConfig = {
  output: 'standalone',
}

export default withPayload(nextConfig)
"""

NEXT_ENV = """/// <reference types="next" />
/// <reference types="next/image-types/global" />
"""

PAYLOAD_CONFIG = """import path from 'path'
import { fileURLToPath } from 'url'
import { buildConfig } from 'payload'
import { postgresAdapter } from '@payloadcms/db-postgres'
import { lexicalEditor } from '@payloadcms/richtext-lexical'
import sharp from 'sharp'

import { Pages } from './collections/Pages'
import { Media } from './collections/Media'
import { Users } from './collections/Users'
{{collection_imports}}
const filename = fileURLToPath(import.meta.url)
const dirname = path.dirname(filename)

export default buildConfig({
  serverURL: process.env.PAYLOAD_PUBLIC_SERVER_URL || '',
  admin: {
    user: Users.slug,
    importMap: {
      baseDir: path.resolve(dirname),
    },
  },
  collections: [Pages, Media, Users{{collection_names}}],
  db: postgresAdapter({
    pool: {
      connectionString: process.env.DATABASE_URL || '',
    },
    push: process.env.NODE_ENV === 'development',
  }),
  editor: lexicalEditor(),
  secret: process.env.PAYLOAD_SECRET || 'CHANGE_ME_IN_PRODUCTION',
  typescript: {
    outputFile: path.resolve(dirname, 'payload-types.ts'),
  },
  cors: [process.env.FRONTEND_URL || ''].filter(Boolean),
  sharp,
  onInit: async (payload) => {
    const adminEmail = process.env.PAYLOAD_ADMIN_EMAIL
    const adminPassword = process.env.PAYLOAD_ADMIN_PASSWORD
    if (!adminEmail || !adminPassword) {
      console.log('PAYLOAD_ADMIN_EMAIL and PAYLOAD_ADMIN_PASSWORD not set. Skipping admin user creation.')
      return
    }
    const existingUsers = await payload.find({ collection: 'users', limit: 1 })
    if (existingUsers.totalDocs === 0) {
      await payload.create({
        collection: 'users',
        data: { email: adminEmail, password: adminPassword },
      })
      console.log(`Admin user created: ${adminEmail}`)
    }
  },
})
"""

_DEPLOY_HOOKS = """  hooks: {
    afterChange: [
      async ({ collection }) => {
        await triggerDeploy(collection.slug)
      },
    ],
    afterDelete: [
      async ({ collection }) => {
        await triggerDeploy(collection.slug)
      },
    ],
  },"""

PAGES_COLLECTION = """import type { CollectionConfig } from 'payload'
import { triggerDeploy } from '../hooks/triggerDeploy'

export const Pages: CollectionConfig = {
  slug: 'pages',
  admin: {
    useAsTitle: 'title',
    defaultColumns: ['title', 'showInMenu', 'menuOrder', 'updatedAt'],
  },
  access: {
    read: () => true,
  },
""" + _DEPLOY_HOOKS + """
  fields: [
    { name: 'title', type: 'text', required: true },
    { name: 'slug', type: 'text', required: true, unique: true },
    { name: 'showInMenu', type: 'checkbox', defaultValue: false },
    { name: 'menuOrder', type: 'number' },
    { name: 'body', type: 'richText' },
  ],
}
"""

MEDIA_COLLECTION = """import type { CollectionConfig } from 'payload'

export const Media: CollectionConfig = {
  slug: 'media',
  access: {
    read: () => true,
  },
  upload: {
    staticDir: 'public/uploads',
    mimeTypes: ['image/*'],
  },
  fields: [
    { name: 'alt', type: 'text' },
  ],
}
"""

USERS_COLLECTION = """import type { CollectionConfig } from 'payload'

export const Users: CollectionConfig = {
  slug: 'users',
  auth: true,
  admin: {
    useAsTitle: 'email',
  },
  fields: [],
}
"""

TRIGGER_DEPLOY_HOOK = """/**
 * Fires a repository_dispatch event so GitHub Actions rebuilds the website.
 */
export async function triggerDeploy(collectionSlug: string): Promise<void> {
  const token = process.env.GITHUB_TOKEN
  const repo = process.env.GITHUB_REPO // "owner/repo"

  if (!token || !repo) {
    console.log('[Deploy Hook] Skipping: GITHUB_TOKEN or GITHUB_REPO not configured')
    return
  }

  try {
    const response = await fetch(`https://api.github.com/repos/${repo}/dispatches`, {
      method: 'POST',
      headers: {
        Accept: 'application/vnd.github+json',
        Authorization: `Bearer ${token}`,
        'Content-Type': 'application/json',
      },
      body: JSON.stringify({
        event_type: 'content_update',
        client_payload: { collection: collectionSlug, timestamp: new Date().toISOString() },
      }),
    })
    if (response.status !== 204) {
      console.error(`[Deploy Hook] Failed to trigger deploy: ${response.status} ${await response.text()}`)
    }
  } catch (error) {
    console.error('[Deploy Hook] Error triggering deploy:', error)
  }
}
"""

ADMIN_PAGE = """import type { Metadata } from 'next'

import config from '@payload-config'
import { RootPage, generatePageMetadata } from '@payloadcms/next/views'
import { importMap } from '../importMap'

type Args = {
  params: Promise<{ segments: string[] }>
  searchParams: Promise<{ [key: string]: string | string[] }>
}

export const generateMetadata = ({ params, searchParams }: Args): Promise<Metadata> =>
  generatePageMetadata({ config, params, searchParams })

const Page = ({ params, searchParams }: Args) =>
  RootPage({ config, importMap, params, searchParams })

export default Page
"""

ADMIN_IMPORT_MAP = "export const importMap = {}\n"

REST_ROUTE = """import config from '@payload-config'
import { REST_DELETE, REST_GET, REST_OPTIONS, REST_PATCH, REST_POST, REST_PUT } from '@payloadcms/next/routes'

export const GET = REST_GET(config)
export const POST = REST_POST(config)
export const DELETE = REST_DELETE(config)
export const PATCH = REST_PATCH(config)
export const PUT = REST_PUT(config)
export const OPTIONS = REST_OPTIONS(config)
"""

GRAPHQL_ROUTE = """import config from '@payload-config'
import { GRAPHQL_POST } from '@payloadcms/next/routes'

export const POST = GRAPHQL_POST(config)
"""

ADMIN_LAYOUT = """import type { ServerFunctionClient } from 'payload'

import config from '@payload-config'
import { handleServerFunctions, RootLayout } from '@payloadcms/next/layouts'
import React from 'react'
import { importMap } from './admin/importMap'

import '@payloadcms/next/css'

type Args = {
  children: React.ReactNode
}

const serverFunction: ServerFunctionClient = async function (args) {
  'use server'
  return handleServerFunctions({ ...args, config, importMap })
}

const Layout = ({ children }: Args) => (
  <RootLayout config={config} importMap={importMap} serverFunction={serverFunction}>
    {children}
  </RootLayout>
)

export default Layout
"""

PAYLOAD_DOCKERFILE = """FROM node:22-alpine AS base

FROM base AS deps
RUN apk add --no-cache libc6-compat
WORKDIR /app
COPY package*.json ./
RUN npm ci

FROM base AS builder
WORKDIR /app
COPY --from=deps /app/node_modules ./node_modules
COPY . .
ENV NEXT_TELEMETRY_DISABLED=1
ENV NODE_ENV=production
RUN npm run build

FROM base AS runner
WORKDIR /app
ENV NODE_ENV=production
ENV NEXT_TELEMETRY_DISABLED=1
COPY --from=builder /app/.next ./.next
COPY --from=builder /app/node_modules ./node_modules
COPY --from=builder /app/package.json ./package.json
COPY --from=builder /app/src ./src
COPY --from=builder /app/tsconfig.json ./tsconfig.json
COPY --from=builder /app/next.config.mjs ./next.config.mjs
RUN mkdir -p ./public/uploads
ENV PORT=3000
ENV HOSTNAME="0.0.0.0"
EXPOSE 3000

# Railway sets PORT at runtime
CMD ["sh", "-c", "npm run migrate && npm run start -- -p ${PORT:-3000}"]
"""

NIXPACKS_TOML = """[phases.setup]
nixPkgs = ["nodejs_22"]

[phases.install]
cmds = ["npm ci"]

[phases.build]
cmds = ["npm run build"]

[start]
cmd = "npm run migrate && npm start"
"""

RAILWAY_TOML = """[build]
builder = "dockerfile"
dockerfilePath = "Dockerfile"

[deploy]
healthcheckPath = "/admin"
healthcheckTimeout = 120
restartPolicyType = "on_failure"
restartPolicyMaxRetries = 3
"""

PAYLOAD_GITIGNORE = """node_modules/
.next/
.env
*.log
public/uploads/*
!public/uploads/.gitkeep
"""

# ----------------------------------------------------------------------
# web/
# ----------------------------------------------------------------------

WEB_PACKAGE_JSON = to_json({
    "name": "web",
    "private": True,
    "type": "module",
    "scripts": {
        "build": "nuxt build",
        "dev": "nuxt dev",
        "generate": "nuxt generate",
        "preview": "nuxt preview",
        "postinstall": "nuxt prepare",
    },
    "dependencies": {
        "nuxt": "^4.2.2",
        "vue": "^3.5.0",
        "vue-router": "^4.5.0",
    },
    "devDependencies": {
        "@types/node": "^22",
    },
})

NUXT_CONFIG = """// https://nuxt.com/docs/api/configuration/nuxt-config
export default defineNuxtConfig({
  compatibilityDate: '2025-01-01',
{{base_url_config}}
  ssr: true,

  nitro: {
    prerender: {
      crawlLinks: true,
      routes: ['/'],
      failOnError: false,
    },
  },

  runtimeConfig: {
    payloadApiUrl: process.env.PAYLOAD_API_URL || 'http://localhost:3000/api',
    public: {
      payloadApiUrl: process.env.NUXT_PUBLIC_PAYLOAD_API_URL || 'http://localhost:3000/api',
    },
  },
})
"""

WEB_APP_VUE = """<template>
  <div>
    <header>
      <nav>
        <NuxtLink v-for="page in menu" :key="page.id" :to="page.slug === 'home' ? '/' : `/${page.slug}`">
          {{ page.title }}
        </NuxtLink>
      </nav>
    </header>
    <main>
      <NuxtPage />
    </main>
  </div>
</template>

<script setup lang="ts">
const { data: menu } = await useMenuPages()
</script>
"""

WEB_INDEX_PAGE = """<template>
  <PageContent slug="home" />
</template>
"""

WEB_SLUG_PAGE = """<template>
  <PageContent :slug="String(route.params.slug)" />
</template>

<script setup lang="ts">
const route = useRoute()
</script>
"""

WEB_PAGE_CONTENT = """<template>
  <article v-if="page">
    <h1>{{ page.title }}</h1>
    <div v-html="renderLexical(page.body)" />
  </article>
  <p v-else>Page not found.</p>
</template>

<script setup lang="ts">
const props = defineProps<{ slug: string }>()
const { data: page } = await usePage(() => props.slug)

function renderLexical(body: any): string {
  const children = body?.root?.children ?? []
  return children
    .map((node: any) => `<p>${(node.children ?? []).map((c: any) => c.text ?? '').join('')}</p>`)
    .join('')
}
</script>
"""

WEB_USE_PAYLOAD = """export function usePayloadApiUrl() {
  const config = useRuntimeConfig()
  return import.meta.server ? config.payloadApiUrl : config.public.payloadApiUrl
}

export function useMenuPages() {
  const apiUrl = usePayloadApiUrl()
  const result = useFetch<{ docs: any[] }>(`${apiUrl}/pages`, {
    query: { 'where[showInMenu][equals]': 'true', sort: 'menuOrder', limit: 100 },
    key: 'menuPages',
  })
  return { ...result, data: computed(() => result.data.value?.docs ?? []) }
}

export function usePage(slug: MaybeRefOrGetter<string>) {
  const apiUrl = usePayloadApiUrl()
  const slugValue = toValue(slug)
  const result = useFetch<{ docs: any[] }>(`${apiUrl}/pages`, {
    query: { 'where[slug][equals]': slugValue, limit: 1 },
    key: `page-${slugValue}`,
  })
  return { ...result, data: computed(() => result.data.value?.docs?.[0] ?? null) }
}
"""

WEB_GITIGNORE = """node_modules/
.nuxt/
.output/
.env
"""

# ----------------------------------------------------------------------
# repository root
# ----------------------------------------------------------------------

ROOT_GITIGNORE = """node_modules/
.env
.DS_Store
*.log
"""

README = """# {{project_name}}

CMS-powered website generated by cms-starter.

- `payload/` - Payload CMS (deployed on Railway)
- `web/` - Nuxt static site (built by GitHub Actions, uploaded over FTP)

Website: {{website_url}}
Admin login: {{admin_email}}

Content changes in the CMS trigger the `content_update` workflow, which
regenerates the static site and deploys it.
"""

DEPLOY_WORKFLOW = """name: Build and Deploy

on:
  repository_dispatch:
    types: [content_update]
  push:
    branches: [main]
    paths:
      - 'web/**'
      - '.github/workflows/deploy.yml'
  workflow_dispatch:

jobs:
  build-and-deploy:
    runs-on: ubuntu-latest

    steps:
      - name: Checkout
        uses: actions/checkout@v4

      - name: Setup Node.js
        uses: actions/setup-node@v4
        with:
          node-version: '22'

      - name: Install dependencies
        working-directory: web
        run: npm install

      - name: Generate static site
        working-directory: web
        env:
          NUXT_PUBLIC_PAYLOAD_API_URL: ${{ secrets.PAYLOAD_API_URL }}
          NODE_OPTIONS: '--max-old-space-size=8192'
        run: npm run generate

      - name: Deploy to FTP
        uses: SamKirkland/FTP-Deploy-Action@v4.3.5
        with:
          server: ${{ secrets.FTP_HOST }}
          username: ${{ secrets.FTP_USERNAME }}
          password: ${{ secrets.FTP_PASSWORD }}
          local-dir: web/.output/public/
          server-dir: ${{ secrets.FTP_SERVER_DIR || './' }}
"""


# ----------------------------------------------------------------------
# generated collections
# ----------------------------------------------------------------------


def _quote(value: Any) -> str:
    return "'" + str(value).replace("\\", "\\\\").replace("'", "\\'") + "'"


def collection_field(field: Dict[str, Any]) -> str:
    parts: List[str] = [
        f"      name: {_quote(field['name'])}",
        f"      type: {_quote(field['type'])}",
    ]
    if field.get("required"):
        parts.append("      required: true")
    if field.get("unique"):
        parts.append("      unique: true")
    if field.get("relationTo"):
        parts.append(f"      relationTo: {_quote(field['relationTo'])}")
    if field.get("hasMany") is not None:
        parts.append(f"      hasMany: {'true' if field['hasMany'] else 'false'}")
    options = field.get("options") or []
    if options:
        rendered = ",\n".join(
            f"        {{ label: {_quote(o['label'])}, value: {_quote(o['value'])} }}" for o in options
        )
        parts.append(f"      options: [\n{rendered}\n      ]")
    description = (field.get("admin") or {}).get("description")
    if description:
        parts.append(f"      admin: {{\n        description: {_quote(description)}\n      }}")
    return "    {\n" + ",\n".join(parts) + "\n    }"


def collection_file(collection: Dict[str, Any]) -> str:
    use_as_title = (collection.get("admin") or {}).get("useAsTitle")
    admin = f"\n  admin: {{\n    useAsTitle: {_quote(use_as_title)},\n  }}," if use_as_title else ""
    fields = ",\n".join(collection_field(f) for f in collection["fields"])
    return (
        "import type { CollectionConfig } from 'payload'\n"
        "import { triggerDeploy } from '../hooks/triggerDeploy'\n\n"
        f"export const {collection['name']}: CollectionConfig = {{\n"
        f"  slug: {_quote(collection['slug'])},{admin}\n"
        "  access: {\n    read: () => true,\n  },\n"
        f"{_DEPLOY_HOOKS}\n"
        f"  fields: [\n{fields}\n  ],\n"
        "}\n"
    )
