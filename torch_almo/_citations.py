"""Package-level duecredit citations for torch-almo.

Imported last in torch_almo.__init__ so the package is fully loaded before
citations are registered.
"""

from torch_almo._duecredit import BibTeX, due


due.cite(
    BibTeX(
        """@article{khaliullin2006almo,
  title={An efficient self-consistent field method for large systems of weakly
     interacting components},
  author={Khaliullin, Rustam Z and Head-Gordon, Martin and Bell, Alexis T},
  journal={The Journal of Chemical Physics},
  volume={124},
  number={20},
  pages={204105},
  year={2006},
  doi={10.1063/1.2191500}
}"""
    ),
    description="Absolutely localized molecular orbitals (ALMO) SCF",
    path="torch_almo",
    cite_module=True,
)
due.cite(
    BibTeX(
        """@article{nocedal1980updating,
  title={Updating quasi-Newton matrices with limited storage},
  author={Nocedal, Jorge},
  journal={Mathematics of Computation},
  volume={35},
  number={151},
  pages={773--782},
  year={1980},
  doi={10.1090/S0025-5718-1980-0572855-7}
}"""
    ),
    description="Limited-memory BFGS",
    path="torch_almo.optimizers.lbfgs",
    cite_module=True,
)
