"""Ethereum chain data gateway."""
