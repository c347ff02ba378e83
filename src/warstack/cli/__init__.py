"""Command-line interface for WarStack sessions"""
