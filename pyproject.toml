[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slampose"
version = "0.1.0"
description = "Camera pose and similarity estimation for visual SLAM: EPnP with RANSAC, Sim3 alignment, trajectory export and thread coordination flags"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["slam", "pnp", "epnp", "ransac", "sim3", "pose estimation", "trajectory", "computer vision"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["slampose"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
