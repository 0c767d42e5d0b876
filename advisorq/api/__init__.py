"""HTTP surface for advisor insights"""
