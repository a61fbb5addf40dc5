[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wardgate"
version = "0.1.0"
description = "Policy-enforcing gateway between automated agents and upstream HTTP, IMAP and SMTP services"
requires-python = ">=3.10"
keywords = [
    "proxy",
    "gateway",
    "policy",
    "rate-limiting",
    "imap",
    "smtp",
    "redaction",
    "wsgi",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: Communications :: Email",
    "Topic :: Security",
]
dependencies = [
    "werkzeug>=3.0",
    "httpx>=0.27",
]

[project.optional-dependencies]
test = [
    "pytest>=8.0",
]

[tool.hatch.build.targets.wheel]
packages = ["wardgate"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
