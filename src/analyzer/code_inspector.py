"""
GitHub Code Inspector (src/analyzer/code_inspector.py)

Classifies a repository without cloning it: the Git Trees API lists every
path, then a handful of manifests and small source files are fetched raw
and fed to classify(), a pure function over {path: content}.

Detects:
  language / framework / app_type   from manifests (package.json,
                                     requirements.txt, pom.xml, go.mod, ...)
  dependencies                       flattened name → version spec
  build / start commands             npm scripts, framework conventions
  environment variable names         .env / .env.example
  port                               config files (PORT=, port:, listen)
  database requirements              dependency name keywords
  dockerized / static_files          Dockerfile / index.html

Uses GITHUB_TOKEN when set (Bearer), unauthenticated otherwise.
Any failure to reach or read the repository raises AnalysisError.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import aiohttp

from src.errors import AnalysisError
from src.schemas.deployment_schemas import CodeAnalysis

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
REQUEST_TIMEOUT = 30
RETRY_ATTEMPTS  = 3
RETRY_BACKOFF   = [1.0, 2.0, 4.0]
MAX_SOURCE_FILES = 20
MAX_SOURCE_SIZE  = 200_000

MANIFESTS = (
    "package.json", "requirements.txt", "pyproject.toml", "Pipfile",
    "pom.xml", "build.gradle", "go.mod", "composer.json", "Gemfile",
    ".env", ".env.example", ".env.local", "config.json", "config.yaml",
    "config.yml", "docker-compose.yml", "docker-compose.yaml", "nginx.conf",
)
CONFIG_FILES = (
    ".env", ".env.example", ".env.local", "config.json", "config.yaml",
    "config.yml", "docker-compose.yml", "docker-compose.yaml", "nginx.conf",
)
MARKERS = ("Dockerfile", "index.html", "manage.py", "artisan", "config.ru", "main.go")

DATABASE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "postgresql": ("postgresql", "psycopg2", "pg", "asyncpg"),
    "mysql":      ("mysql", "mysql2", "pymysql"),
    "mongodb":    ("mongodb", "mongoose", "pymongo"),
    "redis":      ("redis", "redis-py", "ioredis"),
    "sqlite":     ("sqlite3", "sqlite"),
}

PORT_PATTERNS = (
    re.compile(r"PORT\s*=\s*(\d+)", re.I),
    re.compile(r"port\s*:\s*(\d+)", re.I),
    re.compile(r"listen\s+(\d+)", re.I),
)

_REQ_SPLIT = re.compile(r"^\s*([A-Za-z0-9_.\-\[\]]+)\s*(.*)$")


# ══════════════════════════════════════════════════════════════════════════════
# Pure classification
# ══════════════════════════════════════════════════════════════════════════════

def _read_json(content: Optional[str]) -> Dict:
    if not content:
        return {}
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def _sources_contain(files: Dict[str, Optional[str]], patterns: Tuple[str, ...]) -> bool:
    for path, content in files.items():
        if content and path.endswith((".py", ".js", ".java")):
            if any(p in content for p in patterns):
                return True
    return False


def _pip_requirements(content: str) -> Dict[str, str]:
    deps: Dict[str, str] = {}
    for line in content.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        m = _REQ_SPLIT.match(line)
        if m:
            deps[m.group(1).lower()] = m.group(2).strip() or "*"
    return deps


def _env_var_names(content: str) -> List[str]:
    names: List[str] = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        name = line.split("=", 1)[0].strip()
        if name.startswith("export "):
            name = name[len("export "):].strip()
        if name:
            names.append(name)
    return names


def classify(files: Dict[str, Optional[str]]) -> CodeAnalysis:
    """
    Build a CodeAnalysis from repository contents.
    `files` maps repository paths to text, or None for paths whose content
    was not fetched (presence still counts).
    """
    root = {p for p in files if "/" not in p}
    language: Optional[str] = None
    framework: Optional[str] = None
    app_type: Optional[str] = None
    deps: Dict[str, str] = {}
    build: List[str] = []
    start: List[str] = []

    package = _read_json(files.get("package.json"))

    # ── Language / framework ─────────────────────────────────────────────────
    if "package.json" in root:
        language = "javascript"
        runtime_deps = package.get("dependencies") or {}
        if "express" in runtime_deps:
            framework = "express"
        elif "next" in runtime_deps:
            framework = "nextjs"
        elif "react" in runtime_deps:
            framework = "react"
        elif "vue" in runtime_deps:
            framework = "vue"
        else:
            framework = "node"
        app_type = "node" if framework in ("express", "node") else framework
    elif root & {"requirements.txt", "pyproject.toml", "Pipfile"}:
        language = "python"
        if "manage.py" in root:
            framework = "django"
        elif _sources_contain(files, ("from flask import", "Flask(__name__)")):
            framework = "flask"
        elif _sources_contain(files, ("from fastapi import", "FastAPI(")):
            framework = "fastapi"
        app_type = framework or "python"
    elif root & {"pom.xml", "build.gradle"}:
        language = "java"
        if "spring-boot" in (files.get("pom.xml") or "") or "spring-boot" in (files.get("build.gradle") or ""):
            framework = "spring-boot"
        app_type = framework or "java"
    elif root & {"go.mod", "main.go"}:
        language = app_type = "go"
    elif "composer.json" in root:
        language = "php"
        framework = "laravel" if "artisan" in root else None
        app_type = framework or "php"
    elif root & {"Gemfile", "config.ru"}:
        language = "ruby"
        framework = "rails" if "config.ru" in root else None
        app_type = framework or "ruby"

    dockerized = "Dockerfile" in root
    static_files = "index.html" in root
    if static_files and app_type is None:
        app_type = "static"
        language = "html"

    # ── Dependencies ─────────────────────────────────────────────────────────
    if package:
        deps.update({k.lower(): str(v) for k, v in (package.get("dependencies") or {}).items()})
        deps.update({k.lower(): str(v) for k, v in (package.get("devDependencies") or {}).items()})
    if files.get("requirements.txt"):
        deps.update(_pip_requirements(files["requirements.txt"]))
    composer = _read_json(files.get("composer.json"))
    if composer:
        deps.update({k.lower(): str(v) for k, v in (composer.get("require") or {}).items()})

    # ── Commands ─────────────────────────────────────────────────────────────
    scripts = package.get("scripts") or {}
    if scripts.get("build"):
        build.append("npm run build")
    if scripts.get("start"):
        start.append("npm start")
    elif package.get("main"):
        start.append(f"node {package['main']}")
    if framework == "django":
        start.append("python manage.py runserver 0.0.0.0:8000")
    elif framework == "flask":
        start.append("python app.py")
    elif framework == "fastapi":
        start.append("uvicorn main:app --host 0.0.0.0 --port 8000")
    elif framework == "spring-boot":
        build.append("mvn clean package")
        start.append("java -jar target/*.jar")
    elif app_type == "go":
        build.append("go build")
        start.append("./main")
    if dockerized:
        build.append("docker build -t app .")
        start.append("docker run -p 8080:8080 app")

    # ── Configuration ────────────────────────────────────────────────────────
    env_source = files.get(".env") or files.get(".env.example") or ""
    env_vars = _env_var_names(env_source)

    config_text = "\n".join(files.get(name) or "" for name in CONFIG_FILES)
    port: Optional[int] = None
    for pattern in PORT_PATTERNS:
        m = pattern.search(config_text)
        if m:
            port = int(m.group(1))
            break

    dep_names = " ".join(deps)
    databases = [
        db for db, keywords in DATABASE_KEYWORDS.items()
        if any(re.search(rf"(^|[\s\-_]){re.escape(kw)}($|[\s\-_\[])", dep_names) for kw in keywords)
    ]

    return CodeAnalysis(
        language=language,
        framework=framework,
        app_type=app_type,
        port=port,
        dependencies=deps or None,
        build_commands=build,
        start_commands=start,
        environment_variables=env_vars,
        database_requirements=databases,
        dockerized=dockerized,
        static_files=static_files,
    )


# ══════════════════════════════════════════════════════════════════════════════
# GitHub fetcher
# ══════════════════════════════════════════════════════════════════════════════

class GitHubCodeInspector:
    """Fetches the files classify() needs through the GitHub REST API."""

    def __init__(self, token: Optional[str] = None, api_base: str = GITHUB_API_BASE) -> None:
        self._token   = (token if token is not None else os.getenv("GITHUB_TOKEN", "")).strip()
        self.api_base = api_base.rstrip("/")

    def _headers(self, raw: bool = False) -> dict:
        headers = {
            "Accept":               "application/vnd.github.raw+json" if raw else "application/vnd.github+json",
            "User-Agent":           "deployment-engine/1.0",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @staticmethod
    def parse_repo_url(url: str) -> Tuple[str, str]:
        parsed = urlparse((url or "").strip())
        path   = parsed.path.strip("/").removesuffix(".git")
        parts  = [p for p in path.split("/") if p]
        if parsed.netloc and "github" not in parsed.netloc:
            raise AnalysisError(f"Only GitHub repositories can be inspected, got '{url}'")
        if len(parts) < 2:
            raise AnalysisError(
                f"Cannot parse GitHub URL '{url}'. Expected format: https://github.com/owner/repo"
            )
        return parts[0], parts[1]

    async def inspect(self, repository_url: str) -> CodeAnalysis:
        owner, repo = self.parse_repo_url(repository_url)
        try:
            async with aiohttp.ClientSession() as session:
                tree = await self._list_tree(session, owner, repo)
                wanted = self._select_paths(tree)
                contents = await asyncio.gather(
                    *(self._fetch_file(session, owner, repo, p) for p in wanted)
                )
        except aiohttp.ClientError as exc:
            raise AnalysisError(f"GitHub request failed for {owner}/{repo}: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise AnalysisError(f"GitHub request timed out for {owner}/{repo}") from exc

        files: Dict[str, Optional[str]] = {item["path"]: None for item in tree}
        files.update(dict(zip(wanted, contents)))
        analysis = classify(files)
        logger.info(
            "Inspected %s/%s: %d paths, language=%s framework=%s app_type=%s",
            owner, repo, len(tree), analysis.language, analysis.framework, analysis.app_type,
        )
        return analysis

    # ── Tree listing ──────────────────────────────────────────────────────────

    async def _list_tree(self, session: aiohttp.ClientSession, owner: str, repo: str) -> List[dict]:
        """Blob entries of the default branch. Tries HEAD, main, master in order."""
        for ref in ("HEAD", "main", "master"):
            url = f"{self.api_base}/repos/{owner}/{repo}/git/trees/{ref}?recursive=1"
            async with session.get(
                url, headers=self._headers(), timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT),
            ) as resp:
                if resp.status == 404 and ref != "master":
                    continue
                if resp.status in (401, 403):
                    raise AnalysisError(
                        f"GitHub {resp.status} listing {owner}/{repo}. "
                        "Check GITHUB_TOKEN and repository visibility."
                    )
                if resp.status != 200:
                    text = await resp.text()
                    raise AnalysisError(f"GitHub API {resp.status} listing {owner}/{repo}: {text[:300]}")
                data = await resp.json()
                if data.get("truncated"):
                    logger.warning("Tree truncated by GitHub for %s/%s", owner, repo)
                return [item for item in data.get("tree", []) if item.get("type") == "blob"]

        raise AnalysisError(f"No accessible branch (HEAD/main/master) for {owner}/{repo}")

    @staticmethod
    def _select_paths(tree: List[dict]) -> List[str]:
        wanted = [item["path"] for item in tree if item["path"] in MANIFESTS]
        sources = [
            item["path"] for item in tree
            if item["path"].endswith((".py", ".js"))
            and item["path"].count("/") <= 1
            and item.get("size", 0) <= MAX_SOURCE_SIZE
            and not item["path"].startswith(("node_modules/", "test", "."))
        ]
        return wanted + sorted(sources)[:MAX_SOURCE_FILES]

    async def _fetch_file(
        self,
        session: aiohttp.ClientSession,
        owner:   str,
        repo:    str,
        path:    str,
    ) -> Optional[str]:
        """Raw file text with retry/back-off. None when unreadable."""
        url = f"{self.api_base}/repos/{owner}/{repo}/contents/{path}"
        for attempt in range(RETRY_ATTEMPTS):
            try:
                async with session.get(
                    url, headers=self._headers(raw=True),
                    timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT),
                ) as resp:
                    if resp.status == 200:
                        body = await resp.read()
                        return body.decode("utf-8", errors="replace")
                    if resp.status in (401, 403, 404):
                        logger.warning("HTTP %d fetching %s, skipping", resp.status, path)
                        return None
                    logger.warning(
                        "HTTP %d fetching %s (attempt %d/%d)",
                        resp.status, path, attempt + 1, RETRY_ATTEMPTS,
                    )
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "Error fetching %s: %s (attempt %d/%d)",
                    path, type(exc).__name__, attempt + 1, RETRY_ATTEMPTS,
                )
            if attempt < RETRY_ATTEMPTS - 1:
                await asyncio.sleep(RETRY_BACKOFF[attempt])
        return None
