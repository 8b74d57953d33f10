[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dnschain"
version = "0.1.0"
description = "Composable chain of DNS resolvers: custom mappings, hosts files, rewriting, special-use names, upstream forwarding, metrics and query logging"
requires-python = ">=3.10"
keywords = ["dns", "resolver", "doh", "dot", "hosts", "rewrite", "edns", "ede"]
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
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "dnspython>=2.3",
    "httpx>=0.24",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["dnschain"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
