"""
Keyword search package.

Pure-Python search stack for starred repositories:
- analyzers: tokenizer, normalizer (synonyms, abbreviations), stemmer, stop words
- fuzzy: Levenshtein distance and candidate ranking
- index: inverted index, field index and snapshots
- query: query language parser
- highlight: match spans inside field values
- keyword_engine: TF-IDF scoring, boolean joins, filters and sorting
"""
