"""
Form builder: design forms with validated and formula-derived fields,
preview them live and keep saved versions.
"""
