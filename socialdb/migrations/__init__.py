"""Ordered schema migration units applied by ``socialdb.migrator``.

Files are named ``NNN_description.py`` and run in name order. Modules whose
names start with an underscore (like this one) are not migration units.
"""
