"""Allow ``python -m knowledge_search.cli`` execution."""

from knowledge_search.cli.search import main

main()
