"""Command line interface for pkgplan"""
