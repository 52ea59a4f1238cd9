from releasepipe.cli import main

main()
