# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

# add project root to sys.path for autodoc
import os
import sys

sys.path.insert(0, os.path.abspath('../..'))

# Qt must not look for a display while autodoc imports the package
os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')

import GiftList  # noqa: E402

# -- Project information -----------------------------------------------------

project = 'GiftList'
copyright = '2025, GiftList contributors'
author = GiftList.__author__
release = GiftList.__version__

# -- General configuration ---------------------------------------------------

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.coverage',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.autosectionlabel',
]

napoleon_google_docstring = True
napoleon_use_param = False
napoleon_use_ivar = False

pygments_style = 'vs'
pygments_dark_style = 'stata-dark'

templates_path = ['_templates']
exclude_patterns = []

autodoc_default_options = {
    'member-order': 'groupwise',
    'show-inheritance': True,
}
autodoc_preserve_defaults = True

# -- Options for HTML output -------------------------------------------------

html_theme = 'furo'
html_theme_options = {
    'light_css_variables': {
        'color-brand-primary': 'rgba(225, 29, 72, 1)',
        'color-brand-content': 'rgba(225, 29, 72, 1)',
    },
    'dark_css_variables': {
        'color-brand-primary': 'rgba(251, 113, 133, 1)',
        'color-brand-content': 'rgba(251, 113, 133, 1)',
    },
    'navigation_with_keys': True,
}
highlight_language = 'python'
