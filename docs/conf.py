#!/usr/bin/env python
# -*- coding: utf-8 -*-

import os
import sys

sys.path.insert(0, os.path.abspath(".."))

import dascombat

extensions = [
    "sphinx.ext.autodoc",
    "sphinx_copybutton",
    "sphinx.ext.doctest",
    "sphinx.ext.viewcode",
    "sphinx_click.ext",
    "sphinx_autodoc_typehints",
]

templates_path = ["_templates"]
source_suffix = ".rst"
master_doc = "index"

# General information about the project.
project = "dascombat"
copyright = "2022, Aaron Scott"
author = "Aaron Scott"

version = dascombat.__version__
release = dascombat.__version__

language = None
exclude_patterns = ["_build", "Thumbs.db", ".DS_Store"]
pygments_style = "sphinx"
todo_include_todos = False


html_theme = "sphinx_material"
html_title = "dascombat"
html_theme_options = {
    "nav_title": "dascombat",
    "color_primary": "blue",
    "color_accent": "light-blue",
    "repo_name": "dascombat",
    "globaltoc_depth": 2,
    "globaltoc_collapse": True,
    "globaltoc_includehidden": False,
}
html_sidebars = {
    "**": ["logo-text.html", "globaltoc.html", "localtoc.html", "searchbox.html"]
}


# html_static_path = ["_static"]
htmlhelp_basename = "dascombatdoc"
latex_elements = {}

latex_documents = [
    (master_doc, "dascombat.tex", "dascombat Documentation", "Aaron Scott", "manual"),
]

man_pages = [(master_doc, "dascombat", "dascombat Documentation", [author], 1)]

texinfo_documents = [
    (
        master_doc,
        "dascombat",
        "dascombat Documentation",
        author,
        "dascombat",
        "ComBat batch correction with PCA before and after correction.",
        "Miscellaneous",
    ),
]
