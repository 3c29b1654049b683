"""Unit tests for repository classification and the GitHub inspector."""

import json
import unittest
from unittest.mock import AsyncMock, patch

from src.analyzer.code_inspector import GitHubCodeInspector, classify
from src.errors import AnalysisError

FLASK_APP = """from flask import Flask
app = Flask(__name__)
"""


class TestClassify(unittest.TestCase):
    """classify() over path → content maps."""

    def test_flask(self):
        analysis = classify({
            "requirements.txt": "Flask==2.3.0\ngunicorn\npsycopg2-binary>=2.9  # db\n",
            "app.py": FLASK_APP,
            ".env.example": "DB_HOST=localhost\nDB_PASSWORD=\n# comment\nexport SECRET_KEY=x\n",
        })
        self.assertEqual(analysis.language, "python")
        self.assertEqual(analysis.framework, "flask")
        self.assertEqual(analysis.app_type, "flask")
        self.assertIsNone(analysis.port)
        self.assertEqual(analysis.dependencies,
                         {"flask": "==2.3.0", "gunicorn": "*", "psycopg2-binary": ">=2.9"})
        self.assertEqual(analysis.start_commands, ["python app.py"])
        self.assertEqual(analysis.environment_variables, ["DB_HOST", "DB_PASSWORD", "SECRET_KEY"])
        self.assertEqual(analysis.database_requirements, ["postgresql"])
        self.assertFalse(analysis.dockerized)

    def test_django_by_manage_py(self):
        analysis = classify({"requirements.txt": "django\n", "manage.py": None})
        self.assertEqual(analysis.framework, "django")

    def test_express(self):
        package = {
            "main": "server.js",
            "scripts": {"start": "node server.js", "build": "tsc"},
            "dependencies": {"express": "^4.18.0", "mongoose": "^7.0.0"},
        }
        analysis = classify({"package.json": json.dumps(package), "nginx.conf": "server { listen 4000; }"})
        self.assertEqual(analysis.language, "javascript")
        self.assertEqual(analysis.framework, "express")
        self.assertEqual(analysis.app_type, "node")
        self.assertEqual(analysis.port, 4000)
        self.assertEqual(analysis.build_commands, ["npm run build"])
        self.assertEqual(analysis.start_commands, ["npm start"])
        self.assertEqual(analysis.database_requirements, ["mongodb"])

    def test_static_site(self):
        analysis = classify({"index.html": "<html></html>", "style.css": None})
        self.assertEqual(analysis.app_type, "static")
        self.assertTrue(analysis.static_files)
        self.assertIsNone(analysis.framework)
        self.assertIsNone(analysis.dependencies)

    def test_dockerized_go(self):
        analysis = classify({"go.mod": "module x", "Dockerfile": "FROM golang"})
        self.assertEqual(analysis.language, "go")
        self.assertTrue(analysis.dockerized)
        self.assertIn("docker build -t app .", analysis.build_commands)

    def test_nested_manifest_ignored(self):
        analysis = classify({"docs/requirements.txt": "sphinx\n"})
        self.assertIsNone(analysis.language)


class TestRepoUrl(unittest.TestCase):

    def test_parse(self):
        for url in ("https://github.com/acme/shop", "https://github.com/acme/shop.git",
                    "https://github.com/acme/shop/tree/main"):
            self.assertEqual(GitHubCodeInspector.parse_repo_url(url), ("acme", "shop"))

    def test_rejects_other_hosts(self):
        with self.assertRaises(AnalysisError):
            GitHubCodeInspector.parse_repo_url("https://gitlab.com/acme/shop")

    def test_rejects_short_path(self):
        with self.assertRaises(AnalysisError):
            GitHubCodeInspector.parse_repo_url("https://github.com/acme")


class TestInspect(unittest.IsolatedAsyncioTestCase):

    async def test_inspect_fetches_manifests_and_sources(self):
        tree = [
            {"path": "requirements.txt", "type": "blob", "size": 20},
            {"path": "app.py", "type": "blob", "size": 50},
            {"path": "static/logo.png", "type": "blob", "size": 900},
        ]
        contents = {"requirements.txt": "flask\n", "app.py": FLASK_APP}

        async def fetch(session, owner, repo, path):
            return contents.get(path)

        inspector = GitHubCodeInspector(token="")
        with patch.object(GitHubCodeInspector, "_list_tree", AsyncMock(return_value=tree)), \
             patch.object(GitHubCodeInspector, "_fetch_file", side_effect=fetch) as fetch_mock:
            analysis = await inspector.inspect("https://github.com/acme/api")

        fetched = sorted(call.args[3] for call in fetch_mock.call_args_list)
        self.assertEqual(fetched, ["app.py", "requirements.txt"])
        self.assertEqual(analysis.framework, "flask")

    async def test_listing_failure_is_analysis_error(self):
        inspector = GitHubCodeInspector(token="")
        with patch.object(GitHubCodeInspector, "_list_tree",
                          AsyncMock(side_effect=AnalysisError("GitHub 403"))):
            with self.assertRaises(AnalysisError):
                await inspector.inspect("https://github.com/acme/private")


if __name__ == '__main__':
    unittest.main()
