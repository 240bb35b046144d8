"""
Search indexing and query engine package.

This package provides a pure-Python search stack:
- analyzers: Tokenizers and filters (lowercase, stop, stemming, CJK bigrams)
- schema: Field types, schema definitions and the tagged field list
- stats: BM25 scoring statistics
- sqlite_storage: SQLite-backed inverted index store and snapshots
- indexer: Scoped write sessions
- query_parser: Boolean/field-scoped query language
- bm25_engine: Query scoring engine
- pages: Page-match locator for paginated sources
- snippet: Context snippets for search results
- search_index: Read-side facade (search, listing, stats)
"""
