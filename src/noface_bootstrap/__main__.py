from noface_bootstrap.cli import main

main()
