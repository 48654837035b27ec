"""Hybrid factor graphs, Bayes nets and Bayes trees."""
