"""Auction core: engine, collaborators, configuration and storage"""
