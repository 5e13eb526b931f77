# core package for the board games catalog
from . import enrichment, images, janitor, parser, store, syncer

__all__ = ["enrichment", "images", "janitor", "parser", "store", "syncer"]
