"""
Recipes module.

Recipes own an ordered list of ingredient lines; a line may point at a
kitchen product so the recipe can be checked against current stock.
"""
