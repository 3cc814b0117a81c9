"""
Errands Express - runner balance and payment approval service
"""
