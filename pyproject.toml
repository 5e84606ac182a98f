[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lidarkit"
version = "0.1.0"
description = "Host-side configuration, device log capture and firmware upgrade logic for networked lidars"
requires-python = ">=3.10"
dependencies = []
keywords = ["lidar", "firmware", "upgrade", "logging", "configuration"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Interface Engine/Protocol Translator",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["lidarkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
