"""Teori checkout backend"""
