"""Discrete-event simulator for DAG-based blockchains: local DAG views with
pivot-chain selection, honest and withholding miners, and simple, peer and
Bitcoin-style network models."""

__version__ = "0.1.0"