"""Command-Line Interface"""
