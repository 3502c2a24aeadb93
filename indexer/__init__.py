"""Full-text search index over crawled Markdown."""
