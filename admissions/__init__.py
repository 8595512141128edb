"""Admissions lead capture API"""
