[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wolfguard"
version = "0.1.0"
description = "Allowed-IP routing trie, netlink message codec, generic netlink client and ring buffer for the WolfGuard VPN interface"
requires-python = ">=3.10"
dependencies = []
keywords = ["vpn", "netlink", "generic-netlink", "routing", "trie", "allowed-ips", "ring-buffer"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["wolfguard"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
