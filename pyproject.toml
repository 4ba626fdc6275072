[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "forumhub"
version = "0.1.0"
description = "Forum service with forum messages, an expiring global chat and WebSocket broadcasting"
requires-python = ">=3.10"
keywords = ["forum", "message board", "chat", "websocket", "starlette", "sqlite"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content :: Message Boards",
]
dependencies = [
    "starlette",
    "jinja2",
    "uvicorn[standard]",
]

[project.optional-dependencies]
test = [
    "pytest",
    "httpx",
    "pytest-asyncio",
]

[project.scripts]
forumhub = "forumhub.app:main"

[tool.hatch.build.targets.wheel]
packages = ["forumhub"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
