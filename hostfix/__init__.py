"""hostfix - managed hosting and paid code fixes for low-code web projects.

This service drives two pipelines over external providers:
- Project migration (repository -> managed fork -> hosted deployment)
- Fix requests (triage -> payment -> AI fix + preview -> approval -> deploy)
"""

__version__ = "0.1.0"
