[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xiaoai-wol"
version = "0.1.0"
description = "Wake-on-LAN bridge for Xiaoai voice skills and MQTT, with a small LAN web panel"
requires-python = ">=3.10"
keywords = ["wake-on-lan", "wol", "xiaoai", "mqtt", "home-automation", "voice-skill"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: No Input/Output (Daemon)",
    "Environment :: Web Environment",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Home Automation",
    "Topic :: System :: Networking",
]
dependencies = [
    "paho-mqtt>=2.0",
    "psutil>=5.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
xiaoai-wol = "xiaoai_wol.server:main"

[tool.hatch.build.targets.wheel]
packages = ["xiaoai_wol"]

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
