"""Tests for the embedding engine.

Unit tests build tiny BERT/DistilBERT repositories on disk (see
``conftest.py``) so nothing touches the network. Tests marked
``integration`` download real checkpoints and are deselected by default.
"""
