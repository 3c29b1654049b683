"""
Host bootstrap script synthesis.

The script is written next to the Terraform files as bootstrap.sh and loaded
by the instance's user_data through file(). Keeping it out of the HCL body
means bash variables never collide with Terraform interpolation.

Three host procedures, picked from the detected stack:
  python   → venv, requirements (or a minimal default set), wrapper entry
             bound to 0.0.0.0:<port>, systemd unit with Restart=always
  node     → nodejs + npm, entry file search, systemd unit with PORT env
  generic  → docker build when a Dockerfile exists, else a placeholder page
             served on <port>

Install steps are fatal (set -e). Verification steps end in `|| true`.
All output is appended to HOST_LOG.
"""
from __future__ import annotations

import shlex
from typing import Dict, List, Optional

HOST_LOG = "/var/log/user-data.log"
APP_ROOT = "/app"

PYTHON_FRAMEWORKS = frozenset({"flask", "django", "fastapi"})
NODE_FRAMEWORKS   = frozenset({"express", "node", "nextjs"})
NODE_LANGUAGES    = frozenset({"javascript", "typescript", "node"})

# Entry file search order, first hit wins
PYTHON_ENTRY_ORDER: List[str] = ["app/app.py", "app.py", "main.py", "server.py"]
NODE_ENTRY_ORDER:   List[str] = [
    "server.js", "app.js", "index.js",
    "src/server.js", "src/app.js", "src/index.js",
]

# Installed when the repository has no requirements.txt
PYTHON_DEFAULT_PACKAGES: Dict[str, str] = {
    "flask":   "flask flask-cors gunicorn",
    "fastapi": "fastapi uvicorn",
    "django":  "django gunicorn",
}


def select_branch(language: Optional[str], framework: Optional[str], app_type: Optional[str]) -> str:
    """Return "python", "node" or "generic"."""
    if framework in PYTHON_FRAMEWORKS or language == "python" or app_type == "python":
        return "python"
    if framework in NODE_FRAMEWORKS or language in NODE_LANGUAGES or app_type == "node":
        return "node"
    return "generic"


def render_bootstrap(
    app_name:       str,
    repository_url: str,
    port:           int,
    language:       Optional[str] = None,
    framework:      Optional[str] = None,
    app_type:       Optional[str] = None,
) -> str:
    """Full bootstrap script for one deployment. Deterministic."""
    branch = select_branch(language, framework, app_type)
    source = shlex.quote(repository_url)
    if branch == "python":
        body = _python_branch(repository_url, port, framework or "flask")
    elif branch == "node":
        body = _node_branch(repository_url, port)
    else:
        body = _generic_branch(repository_url, port)

    return f'''#!/bin/bash
# Host bootstrap for {app_name} ({branch})
set -e
exec > >(tee -a {HOST_LOG}) 2>&1

echo "Starting deployment of {app_name} at $(date)"

yum update -y
yum install -y git

mkdir -p {APP_ROOT}
cd {APP_ROOT}
echo "Cloning repository "{source}
git clone {source} ./app-source
{body}
echo "Deployment script finished at $(date)"
'''


# ── Branches ──────────────────────────────────────────────────────────────────

def _python_entry_search() -> str:
    lines: List[str] = []
    for i, candidate in enumerate(PYTHON_ENTRY_ORDER):
        keyword = "if" if i == 0 else "elif"
        app_dir = f"{APP_ROOT}/app-source"
        if "/" in candidate:
            app_dir = f"{APP_ROOT}/app-source/{candidate.rsplit('/', 1)[0]}"
        filename = candidate.rsplit("/", 1)[-1]
        lines.append(f'{keyword} [ -f "./app-source/{candidate}" ]; then')
        lines.append(f'    APP_DIR="{app_dir}"')
        lines.append(f'    MAIN_PY_FILE="{filename}"')
    lines.append("else")
    lines.append('    echo "Could not find main Python file, defaulting to app.py"')
    lines.append(f'    APP_DIR="{APP_ROOT}/app-source"')
    lines.append('    MAIN_PY_FILE="app.py"')
    lines.append("fi")
    return "\n".join(lines)


def _python_runner(framework: str, port: int) -> str:
    """Body of run_app.py. Binds the framework's app object to every interface."""
    if framework == "django":
        return f'''import os
import sys
from django.core.management import execute_from_command_line

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

if __name__ == "__main__":
    execute_from_command_line(["manage.py", "runserver", "0.0.0.0:{port}", "--noreload"])
'''
    if framework == "fastapi":
        start = f'''    import uvicorn
    print("Starting FastAPI app on 0.0.0.0:{port}...")
    uvicorn.run(app, host="0.0.0.0", port={port})'''
    else:
        start = f'''    print("Starting Flask app on 0.0.0.0:{port}...")
    app.run(host="0.0.0.0", port={port}, debug=False)'''

    return f'''import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

if os.path.exists("app.py"):
    from app import app
elif os.path.exists("main.py"):
    from main import app
elif os.path.exists("server.py"):
    from server import app
else:
    print("No application module found")
    sys.exit(1)

if __name__ == "__main__":
{start}
'''


def _python_branch(repository_url: str, port: int, framework: str) -> str:
    defaults = PYTHON_DEFAULT_PACKAGES.get(framework, PYTHON_DEFAULT_PACKAGES["flask"])
    return f'''
echo "Installing Python environment..."
yum install -y python3 python3-pip

{_python_entry_search()}

echo "Application directory: $APP_DIR"
echo "Main Python file: $MAIN_PY_FILE"
cd "$APP_DIR"

python3 -m venv {APP_ROOT}/venv
source {APP_ROOT}/venv/bin/activate

if [ -f "requirements.txt" ]; then
    echo "Installing requirements from requirements.txt..."
    pip install -r requirements.txt
else
    echo "No requirements.txt found, installing defaults..."
    pip install {defaults}
fi

cat > "$APP_DIR/run_app.py" << 'WRAPPER_EOF'
{_python_runner(framework, port)}WRAPPER_EOF
chmod +x "$APP_DIR/run_app.py"

cat > /etc/systemd/system/flask-app.service << EOL
[Unit]
Description=Python Application
After=network.target

[Service]
Type=simple
User=ec2-user
WorkingDirectory=$APP_DIR
Environment=PATH={APP_ROOT}/venv/bin
ExecStart={APP_ROOT}/venv/bin/python $APP_DIR/run_app.py
Restart=always
RestartSec=3
StandardOutput=journal
StandardError=journal

[Install]
WantedBy=multi-user.target
EOL

chown -R ec2-user:ec2-user {APP_ROOT}
systemctl daemon-reload
systemctl enable flask-app
systemctl start flask-app

sleep 5
systemctl status flask-app --no-pager || true
journalctl -u flask-app --no-pager -n 20 || true

sleep 10
echo "Testing application on port {port}..."
curl -f http://localhost:{port}/ && echo "Application is responding locally" || echo "Application not responding locally"
'''


def _node_entry_search() -> str:
    lines: List[str] = []
    for i, candidate in enumerate(NODE_ENTRY_ORDER):
        keyword = "if" if i == 0 else "elif"
        lines.append(f'{keyword} [ -f "{candidate}" ]; then')
        lines.append(f'    MAIN_JS_FILE="{candidate}"')
    lines.append('elif [ -f "package.json" ] && command -v node >/dev/null; then')
    lines.append(
        '''    MAIN_JS_FILE=$(node -e "try { console.log(require('./package.json').main || 'index.js'); } catch (e) { console.log('index.js'); }")'''
    )
    lines.append("else")
    lines.append('    MAIN_JS_FILE="server.js"')
    lines.append("fi")
    return "\n".join(lines)


def _node_branch(repository_url: str, port: int) -> str:
    return f'''
echo "Installing Node.js environment..."
curl -fsSL https://rpm.nodesource.com/setup_18.x | bash -
yum install -y nodejs

cd {APP_ROOT}/app-source
{_node_entry_search()}
echo "Main Node.js file: $MAIN_JS_FILE"

if [ -f "package.json" ]; then
    echo "Installing npm dependencies..."
    npm install
fi

cat > /etc/systemd/system/node-app.service << EOL
[Unit]
Description=Node.js Application
After=network.target

[Service]
Type=simple
User=ec2-user
WorkingDirectory={APP_ROOT}/app-source
ExecStart=/usr/bin/node $MAIN_JS_FILE
Restart=always
RestartSec=3
Environment=PORT={port}

[Install]
WantedBy=multi-user.target
EOL

chown -R ec2-user:ec2-user {APP_ROOT}
systemctl daemon-reload
systemctl enable node-app
systemctl start node-app

sleep 5
systemctl status node-app --no-pager || true
curl -f http://localhost:{port}/ && echo "Application is responding locally" || echo "Application not responding locally"
'''


def _generic_branch(repository_url: str, port: int) -> str:
    return f'''
echo "Installing Docker..."
yum install -y docker
systemctl start docker
systemctl enable docker
usermod -a -G docker ec2-user

cd {APP_ROOT}/app-source
if [ -f "Dockerfile" ]; then
    echo "Building Docker image..."
    docker build -t app-image .
    docker run -d --restart always -p {port}:{port} -e PORT={port} --name app-container app-image
else
    echo "No Dockerfile found, serving placeholder page..."
    echo "<h1>Hello World!</h1><p>Deployed at $(date)</p>" > index.html
    nohup python3 -m http.server {port} > {APP_ROOT}/http.log 2>&1 &
fi

sleep 5
docker ps || true
curl -f http://localhost:{port}/ && echo "Application is responding locally" || echo "Application not responding locally"
'''
