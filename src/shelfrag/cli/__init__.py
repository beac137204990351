"""ShelfRag command line interface."""
