from __future__ import annotations

project = "StereoSurvey"
author = "StereoSurvey contributors"

extensions = [
    "myst_parser",
    "sphinx.ext.mathjax",
    "sphinx_copybutton",
]

exclude_patterns = ["_build", "examples/**"]

source_suffix = {".md": "markdown"}

# index.md writes inline math as $...$.
myst_enable_extensions = ["dollarmath"]

html_theme = "sphinx_rtd_theme"
